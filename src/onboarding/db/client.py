"""
Onboarding - Database Client.

Chooses the document store from settings and hands out shared instances.
"""

from supabase import Client, create_client

from onboarding.config import settings

from .adapter import PersistenceAdapter
from .local import LocalDocumentStore
from .supabase_store import SupabaseDocumentStore

# Singleton instances
_client: Client | None = None
_adapter: PersistenceAdapter | None = None


def get_service_client() -> Client:
    """
    Get the Supabase client (service role).

    Uses singleton pattern to reuse connection.
    """
    global _client

    if _client is None:
        if not settings.supabase_url or not settings.supabase_service_role_key:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        _client = create_client(
            settings.supabase_url,
            settings.supabase_service_role_key,
        )

    return _client


def get_adapter() -> PersistenceAdapter:
    """Get the configured document store."""
    global _adapter

    if _adapter is None:
        if settings.storage_backend == "supabase":
            _adapter = SupabaseDocumentStore(get_service_client())
        else:
            _adapter = LocalDocumentStore(settings.local_data_dir / "documents")

    return _adapter


def reset_adapter() -> None:
    """Forget cached instances (tests, settings reload)."""
    global _client, _adapter
    _client = None
    _adapter = None
