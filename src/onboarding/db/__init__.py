"""
Onboarding - Document persistence.

One keyed document per owner's draft, with merge-writes per field.
"""

from onboarding.db.adapter import PersistenceAdapter
from onboarding.db.client import get_adapter, get_service_client
from onboarding.db.local import LocalDocumentStore
from onboarding.db.supabase_store import SupabaseDocumentStore

__all__ = [
    "PersistenceAdapter",
    "LocalDocumentStore",
    "SupabaseDocumentStore",
    "get_adapter",
    "get_service_client",
]
