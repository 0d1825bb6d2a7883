"""
Persistence Adapter Protocol.

Defines the document-store interface the draft engine depends on. One
document holds one owner's full draft; writes are merge-writes keyed by
top-level field, so two writes that carry different fields never clobber
each other.

Implementations: `SupabaseDocumentStore` (hosted) and `LocalDocumentStore`
(JSON files on disk, the demo mode).
"""

from typing import Any, Literal, Protocol, runtime_checkable

QueryOp = Literal["==", "array-contains"]


@runtime_checkable
class PersistenceAdapter(Protocol):
    """
    Abstract keyed document store.

    All methods are coroutines; callers await them at the engine's
    suspension points (load, save, share).
    """

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        """Return the document, or None when it does not exist."""
        ...

    async def set_document(
        self,
        collection: str,
        doc_id: str,
        partial: dict[str, Any],
        merge: bool = True,
    ) -> None:
        """
        Write a document.

        With merge=True only the top-level keys present in `partial` are
        replaced; every other key of the stored document is preserved.
        """
        ...

    async def query_documents(
        self,
        collection: str,
        field: str,
        op: QueryOp,
        value: Any,
    ) -> list[dict[str, Any]]:
        """
        Return documents matching a single-field condition.

        "==" compares a top-level value; "array-contains" matches when the
        top-level list contains `value`. Every returned document carries its
        key under "id".
        """
        ...

    async def delete_document(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""
        ...
