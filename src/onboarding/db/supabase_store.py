"""
Supabase document store.

Each collection is a table with three columns:

    id          text primary key
    data        jsonb not null
    updated_at  timestamptz

A merge-write reads the current row, overlays the partial document on its
top-level keys and upserts the result.
"""

import json
import logging
from typing import Any

from supabase import Client

from onboarding.models import utc_now_iso

from .adapter import QueryOp

logger = logging.getLogger(__name__)


class SupabaseDocumentStore:
    """PersistenceAdapter backed by Supabase (PostgREST) tables."""

    def __init__(self, client: Client) -> None:
        self.client = client

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        response = (
            self.client.table(collection)
            .select("id, data")
            .eq("id", doc_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return response.data[0]["data"] or {}

    async def set_document(
        self,
        collection: str,
        doc_id: str,
        partial: dict[str, Any],
        merge: bool = True,
    ) -> None:
        data = dict(partial)
        if merge:
            existing = await self.get_document(collection, doc_id)
            if existing:
                data = {**existing, **partial}

        self.client.table(collection).upsert({
            "id": doc_id,
            "data": data,
            "updated_at": utc_now_iso(),
        }).execute()

    async def query_documents(
        self,
        collection: str,
        field: str,
        op: QueryOp,
        value: Any,
    ) -> list[dict[str, Any]]:
        query = self.client.table(collection).select("id, data")

        if op == "==":
            query = query.filter(f"data->{field}", "eq", json.dumps(value))
        elif op == "array-contains":
            query = query.filter(f"data->{field}", "cs", json.dumps([value]))
        else:
            raise ValueError(f"Unsupported query operator: {op}")

        response = query.execute()
        return [{**(row["data"] or {}), "id": row["id"]} for row in response.data or []]

    async def delete_document(self, collection: str, doc_id: str) -> None:
        self.client.table(collection).delete().eq("id", doc_id).execute()
