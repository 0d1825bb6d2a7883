"""
Pytest configuration and fixtures for the onboarding draft engine tests.
"""

import asyncio
import copy
import os
from unittest.mock import AsyncMock, MagicMock

import pytest

# Set test environment before importing onboarding modules
os.environ["ONBOARDING_ENV"] = "development"
os.environ["STORAGE_BACKEND"] = "local"

from onboarding.auth import AuthenticatedUser  # noqa: E402
from onboarding.db.local import LocalDocumentStore  # noqa: E402
from onboarding.notifications import NotificationClient  # noqa: E402
from onboarding.repository import DraftRepository  # noqa: E402


class RecordingStore(LocalDocumentStore):
    """In-memory store that records writes and can be told to fail or stall."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[tuple[str, str, dict]] = []
        self.fail_writes = False
        self.fail_reads = False
        self.fail_deletes = False
        self.write_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    def writes_to(self, collection: str) -> list[dict]:
        return [partial for coll, _, partial in self.writes if coll == collection]

    async def get_document(self, collection, doc_id):
        if self.fail_reads:
            raise ConnectionError("store unavailable")
        return await super().get_document(collection, doc_id)

    async def set_document(self, collection, doc_id, partial, merge=True):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.write_delay:
                await asyncio.sleep(self.write_delay)
            if self.fail_writes:
                raise ConnectionError("store unavailable")
            self.writes.append((collection, doc_id, copy.deepcopy(partial)))
            await super().set_document(collection, doc_id, partial, merge=merge)
        finally:
            self.in_flight -= 1

    async def delete_document(self, collection, doc_id):
        if self.fail_deletes:
            raise ConnectionError("store unavailable")
        await super().delete_document(collection, doc_id)


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def owner() -> AuthenticatedUser:
    return AuthenticatedUser(id="owner-1", email="owner@example.com")


@pytest.fixture
def collaborator() -> AuthenticatedUser:
    return AuthenticatedUser(id="collab-1", email="a@b.com")


@pytest.fixture
def stranger() -> AuthenticatedUser:
    return AuthenticatedUser(id="stranger-1", email="nobody@example.com")


@pytest.fixture
def notifier() -> AsyncMock:
    """Notification client whose calls succeed unless told otherwise."""
    mock = AsyncMock(spec=NotificationClient)
    mock.send_share_invitation.return_value = True
    mock.send_form_update_notice.return_value = True
    return mock


@pytest.fixture
def make_repository(store, notifier):
    """Build repositories against the shared store with test-friendly timings."""

    def _make(user, **overrides) -> DraftRepository:
        options = {
            "collection": "form_progress",
            "debounce_seconds": 0.05,
            "critical_fields": (),
            "min_groups": 2,
            "notifier": notifier,
        }
        options.update(overrides)
        return DraftRepository(store, user, **options)

    return _make


@pytest.fixture
def mock_supabase():
    """Mock Supabase client for unit tests."""
    mock_client = MagicMock()

    mock_table = MagicMock()
    mock_table.select.return_value = mock_table
    mock_table.upsert.return_value = mock_table
    mock_table.delete.return_value = mock_table
    mock_table.eq.return_value = mock_table
    mock_table.limit.return_value = mock_table
    mock_table.filter.return_value = mock_table
    mock_table.execute.return_value = MagicMock(data=[])

    mock_client.table.return_value = mock_table

    return mock_client
