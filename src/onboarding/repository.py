"""
Draft Repository.

Owns the canonical in-memory draft for the current user (their own draft or
one shared with them) and is the only component that writes it to the
document store.

Write model:
- `update_field` merges a value, marks the draft dirty and (re)starts one
  trailing-edge debounce timer for the whole draft. Critical fields are also
  written immediately, best effort.
- `save` flushes the whole draft with a merge-write. Saves never overlap:
  they queue on one lock, and a queued save that finds nothing dirty returns
  at once, which coalesces bursts.
- Dirty tracking uses an edit counter, so edits made while a save is in
  flight stay dirty after that save lands.
- Load and save failures are recorded on `last_error` and reported as
  False; the in-memory draft and the dirty flag are left as they were.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Iterable

from onboarding import consistency
from onboarding.access import can_access, ensure_access
from onboarding.auth import AuthenticatedUser, require_user
from onboarding.config import settings
from onboarding.consistency import PartitionResult
from onboarding.db.adapter import PersistenceAdapter
from onboarding.exceptions import (
    AccessDenied,
    LoadFailure,
    OnboardingError,
    SaveFailure,
    UnsavedChangesError,
)
from onboarding.models import (
    READ_ONLY_KEYS,
    STRUCTURAL_FIELDS,
    Draft,
    Location,
    MenuGroup,
    WizardStep,
    utc_now_iso,
)
from onboarding.notifications import NotificationClient
from onboarding.sections import MAX_LOCATIONS
from onboarding.storage import BlobStore

logger = logging.getLogger(__name__)


class DraftRepository:
    """Single source of truth for one user's current draft."""

    def __init__(
        self,
        adapter: PersistenceAdapter,
        user: AuthenticatedUser | None,
        *,
        collection: str | None = None,
        debounce_seconds: float | None = None,
        critical_fields: Iterable[str] | None = None,
        min_groups: int | None = None,
        blob_store: BlobStore | None = None,
        notifier: NotificationClient | None = None,
    ) -> None:
        self.adapter = adapter
        self.user = user
        self.collection = collection or settings.forms_collection
        self.debounce_seconds = (
            settings.save_debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self.critical_fields = frozenset(
            settings.critical_field_names if critical_fields is None else critical_fields
        )
        self.min_groups = settings.min_menu_groups if min_groups is None else min_groups
        self.blob_store = blob_store
        self.notifier = notifier

        self._draft = Draft.empty(user.id if user else "", user.email if user else None)
        self._version = 0
        self._saved_version = 0
        self._save_lock = asyncio.Lock()
        self._debounce_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

        self.last_error: OnboardingError | None = None
        self.loaded = False
        self.partition: PartitionResult = self._check(self._draft)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def draft(self) -> Draft:
        return self._draft

    @property
    def dirty(self) -> bool:
        """True while the in-memory draft has edits the store has not seen."""
        return self._version != self._saved_version

    @property
    def saving(self) -> bool:
        return self._save_lock.locked()

    @property
    def is_shared(self) -> bool:
        """True when the current draft belongs to someone else."""
        return self.user is not None and self._draft.owner_id != self.user.id

    def get(self, name: str, default: Any = None) -> Any:
        return self._draft.get(name, default)

    def _check(self, draft: Draft) -> PartitionResult:
        return consistency.check_partition(
            draft.locations,
            draft.groups,
            draft.same_menu_for_all,
            min_groups=self.min_groups,
        )

    def check(self) -> PartitionResult:
        """Recompute the partition check for the current draft."""
        self.partition = self._check(self._draft)
        return self.partition

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load(self, target_id: str | None = None) -> bool:
        """
        Load the user's own draft, or a draft shared with them.

        A missing own draft yields a fresh one seeded with defaults. A
        missing or foreign draft the user is not on raises AccessDenied.

        Returns:
            True on success; False when the store could not be read, in
            which case `last_error` holds a LoadFailure and the current
            draft is untouched.
        """
        user = require_user(self.user)
        target = target_id or user.id

        async with self._save_lock:
            try:
                document = await self.adapter.get_document(self.collection, target)
            except Exception as e:
                logger.warning(f"Failed to load draft {target}: {e}")
                self.last_error = LoadFailure(f"Could not load draft {target}: {e}")
                return False

            if document is None:
                if target != user.id:
                    raise AccessDenied(f"Draft {target} does not exist or is not shared with you")
                draft = Draft.empty(user.id, user.email)
            else:
                draft = Draft.from_document(document, owner_id=target)
                ensure_access(user, draft)

            self._cancel_debounce()
            partition = self._check(draft)
            self._draft = replace(draft, groups=partition.groups)
            self.partition = partition
            self._saved_version = self._version
            self.last_error = None
            self.loaded = True

        logger.info(f"Loaded draft {target} for user {user.id} (shared={self.is_shared})")
        return True

    async def refresh(self) -> bool:
        """
        Re-read the persisted draft to pick up a collaborator's edits.

        Skipped (returns False) while local edits are unsaved, so a refresh
        never overwrites them.
        """
        if self.dirty:
            return False
        return await self.load(self._draft.owner_id)

    async def switch_to(self, target_id: str, discard_changes: bool = False) -> bool:
        """
        Make another draft (own or shared) current.

        Raises:
            UnsavedChangesError: the current draft is dirty and the caller
                did not explicitly accept discarding it.
        """
        if self.dirty and not discard_changes:
            raise UnsavedChangesError(
                f"Draft {self._draft.owner_id} has unsaved changes; save or discard them first"
            )
        self._cancel_debounce()
        await self.wait_idle()
        return await self.load(target_id)

    async def discard_changes(self) -> bool:
        """Drop unsaved edits by reloading the persisted draft."""
        return await self.switch_to(self._draft.owner_id, discard_changes=True)

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def update_field(self, name: str, value: Any) -> bool:
        """Merge one value into the draft. Returns False when nothing changed."""
        return self.update_fields({name: value})

    def update_fields(self, values: dict[str, Any]) -> bool:
        """
        Merge several values into the draft in one edit.

        Never blocks: persistence happens on the debounce timer (and right
        away for critical fields). Must be called from a running event loop.
        """
        blocked = READ_ONLY_KEYS.intersection(values)
        if blocked:
            raise ValueError(f"Read-only draft keys: {', '.join(sorted(blocked))}")
        if not values:
            return False

        if "location_count" in values and "locations" not in values:
            values = {**values, "locations": self._resized_locations(values["location_count"])}
        return self._apply(values)

    def set_progress(self, step: WizardStep, is_complete: bool | None = None) -> bool:
        """Record wizard progress. Only navigation and submission call this."""
        values: dict[str, Any] = {"current_step": WizardStep(step).value}
        if is_complete is not None:
            values["is_complete"] = is_complete
        return self._apply(values)

    def _resized_locations(self, count: Any) -> tuple[Location, ...]:
        if isinstance(count, bool) or not isinstance(count, int):
            raise ValueError(f"location_count must be a whole number, got {count!r}")
        if count > MAX_LOCATIONS:
            raise ValueError(f"location_count cannot exceed {MAX_LOCATIONS}")
        return consistency.resize_locations(self._draft.locations, count)

    def _apply(self, values: dict[str, Any]) -> bool:
        draft = self._draft.with_values(values)
        structural = STRUCTURAL_FIELDS.intersection(values)
        if structural:
            partition = self._check(draft)
            if partition.groups != draft.groups:
                draft = replace(draft, groups=partition.groups)
            self.partition = partition

        if draft.to_document() == self._draft.to_document():
            return False

        self._draft = draft
        self._version += 1
        self._schedule_debounce()

        critical = self.critical_fields.intersection(values)
        if critical:
            if critical & STRUCTURAL_FIELDS:
                critical = critical | STRUCTURAL_FIELDS
            self._spawn(self.save_field(*sorted(critical)))
        return True

    # Structural helpers: each runs through update_fields so the partition
    # check and the save scheduling happen in one place.

    def set_location_count(self, count: int) -> None:
        """Set the declared location count, padding or truncating the list to match."""
        self.update_field("location_count", count)

    def rename_location(self, index: int, name: str) -> None:
        self.update_field("locations", consistency.rename_location(self._draft.locations, index, name))

    def confirm_location(self, index: int) -> None:
        self.update_field("locations", consistency.confirm_location(self._draft.locations, index))

    def set_same_menu_for_all(self, same_menu_for_all: bool) -> None:
        values: dict[str, Any] = {"same_menu_for_all": same_menu_for_all}
        if not same_menu_for_all and not self._draft.groups:
            values["groups"] = consistency.default_groups()
        self.update_fields(values)

    def add_group(self, name: str | None = None) -> MenuGroup:
        groups = consistency.add_group(self._draft.groups, name)
        self.update_field("groups", groups)
        return groups[-1]

    def rename_group(self, group_id: str, name: str) -> None:
        self.update_field("groups", consistency.rename_group(self._draft.groups, group_id, name))

    def confirm_group(self, group_id: str) -> None:
        self.update_field("groups", consistency.confirm_group(self._draft.groups, group_id))

    def remove_group(self, group_id: str) -> None:
        self.update_field("groups", consistency.remove_group(self._draft.groups, group_id))

    def assign_location_to_group(self, group_id: str, location_name: str) -> None:
        """Put a confirmed location in one group, taking it out of all others."""
        if location_name not in consistency.confirmed_location_names(self._draft.locations):
            raise ValueError(f"Location '{location_name}' must be confirmed before grouping")
        groups = consistency.assign_location_to_group(self._draft.groups, group_id, location_name)
        self.update_field("groups", groups)

    def unassign_location(self, group_id: str, location_name: str) -> None:
        groups = consistency.unassign_location(self._draft.groups, group_id, location_name)
        self.update_field("groups", groups)

    # -------------------------------------------------------------------------
    # Saving
    # -------------------------------------------------------------------------

    def _schedule_debounce(self) -> None:
        loop = asyncio.get_running_loop()
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = loop.call_later(self.debounce_seconds, self._on_debounce)
        logger.debug(f"Save scheduled in {self.debounce_seconds}s for draft {self._draft.owner_id}")

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _on_debounce(self) -> None:
        self._debounce_handle = None
        self._spawn(self.save())

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def save(self, notify_collaborators: bool = False) -> bool:
        """
        Flush the whole draft with a merge-write.

        Returns:
            True when the store holds every edit made before this call.
            False on failure: `last_error` holds a SaveFailure (or
            AccessDenied once a collaborator's access was revoked) and the
            draft stays dirty for a retry.
        """
        async with self._save_lock:
            if not self.dirty:
                return True
            if not await self._write_permitted():
                return False

            version = self._version
            draft = self._draft
            stamp = utc_now_iso()
            document = draft.to_document()
            # The sharing list has its own writer (write_sharing)
            document.pop("shared_with", None)
            document["last_updated"] = stamp

            try:
                await self.adapter.set_document(self.collection, draft.owner_id, document, merge=True)
            except Exception as e:
                logger.warning(f"Failed to save draft {draft.owner_id}: {e}")
                self.last_error = SaveFailure(f"Could not save draft {draft.owner_id}: {e}")
                return False

            self._saved_version = version
            self._draft = replace(self._draft, last_updated=stamp)
            self.last_error = None
            logger.info(f"Saved draft {draft.owner_id} ({len(document)} keys)")

        if notify_collaborators:
            await self.notify_collaborators()
        return True

    async def save_field(self, *names: str) -> bool:
        """
        Write only the named keys right away.

        Best effort: a failure is logged and recorded but the dirty flag is
        not touched, since the debounced full save will carry the value.
        """
        async with self._save_lock:
            if not await self._write_permitted():
                return False

            draft = self._draft
            document = draft.to_document()
            partial = {name: document.get(name) for name in names}
            partial["owner_id"] = draft.owner_id
            partial["last_updated"] = utc_now_iso()

            try:
                await self.adapter.set_document(self.collection, draft.owner_id, partial, merge=True)
            except Exception as e:
                logger.warning(f"Immediate save of {', '.join(names)} failed for {draft.owner_id}: {e}")
                self.last_error = SaveFailure(f"Could not save {', '.join(names)}: {e}")
                return False

        logger.debug(f"Saved critical fields {', '.join(names)} for draft {draft.owner_id}")
        return True

    async def _write_permitted(self) -> bool:
        """
        Re-check a collaborator's access against the stored sharing list.

        Called with the save lock held. Owners always pass; for a shared
        draft the stored `shared_with` wins over the copy loaded earlier.
        """
        if not self.is_shared:
            return True

        owner_id = self._draft.owner_id
        try:
            document = await self.adapter.get_document(self.collection, owner_id)
        except Exception as e:
            logger.warning(f"Could not re-check access to draft {owner_id}: {e}")
            self.last_error = SaveFailure(f"Could not check access to draft {owner_id}: {e}")
            return False

        shared_with = list((document or {}).get("shared_with") or [])
        self._draft = replace(self._draft, shared_with=shared_with)
        if document is None or not can_access(self.user, self._draft):
            logger.warning(f"User {self.user.id} lost access to draft {owner_id}; write refused")
            self.last_error = AccessDenied(f"Draft {owner_id} is no longer shared with you")
            return False
        return True

    async def write_sharing(self, shared_with: list[str]) -> bool:
        """Persist only the sharing list, independently of field edits."""
        async with self._save_lock:
            draft = self._draft
            stamp = utc_now_iso()
            partial = {
                "owner_id": draft.owner_id,
                "owner_email": draft.owner_email,
                "shared_with": list(shared_with),
                "last_updated": stamp,
            }
            try:
                await self.adapter.set_document(self.collection, draft.owner_id, partial, merge=True)
            except Exception as e:
                logger.error(f"Failed to write sharing list for {draft.owner_id}: {e}")
                self.last_error = SaveFailure(f"Could not update sharing for {draft.owner_id}: {e}")
                return False

            self._draft = replace(self._draft, shared_with=list(shared_with), last_updated=stamp)
        return True

    async def wait_idle(self) -> None:
        """Wait for in-flight and queued saves to settle (never cancels them)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        async with self._save_lock:
            pass

    async def flush(self) -> bool:
        """Save now instead of waiting for the debounce timer."""
        self._cancel_debounce()
        await self.wait_idle()
        return await self.save()

    async def close(self) -> bool:
        """Flush pending edits before the session goes away."""
        return await self.flush()

    async def notify_collaborators(self) -> None:
        """Best-effort update notice to everyone on the draft except the editor."""
        if self.notifier is None or self.user is None:
            return
        editor = (self.user.email or "").lower()
        recipients = [self._draft.owner_email, *self._draft.shared_with]
        recipients = [r for r in dict.fromkeys(recipients) if r and r.lower() != editor]
        if not recipients:
            return
        sent = await self.notifier.send_form_update_notice(
            updated_by=self.user.email or self.user.id,
            shared_with=recipients,
            form_id=self._draft.owner_id,
        )
        if not sent:
            logger.warning(f"Update notice for draft {self._draft.owner_id} was not delivered")

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    async def upload_file(
        self,
        path: str,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        """Store a file under the draft owner's space and return its URL."""
        require_user(self.user)
        if self.blob_store is None:
            raise RuntimeError("No blob store configured")
        return await self.blob_store.store(
            self._draft.owner_id,
            path,
            filename,
            content,
            content_type,
        )
