"""
Local document store.

Keeps collections in memory and, when given a directory, mirrors each
collection to a JSON file so drafts survive restarts. This is the demo
backend: no hosted services needed.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any

from .adapter import QueryOp

logger = logging.getLogger(__name__)


class LocalDocumentStore:
    """Dict-backed PersistenceAdapter, optionally persisted as JSON files."""

    def __init__(self, data_dir: Path | None = None) -> None:
        self.data_dir = Path(data_dir) if data_dir else None
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    # -------------------------------------------------------------------------
    # File mirroring
    # -------------------------------------------------------------------------

    def _path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def _collection(self, collection: str) -> dict[str, dict[str, Any]]:
        if collection not in self._collections:
            self._collections[collection] = self._read(collection)
        return self._collections[collection]

    def _read(self, collection: str) -> dict[str, dict[str, Any]]:
        if self.data_dir is None:
            return {}
        path = self._path(collection)
        if not path.exists():
            return {}
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _flush(self, collection: str) -> None:
        if self.data_dir is None:
            return
        self.data_dir.mkdir(parents=True, exist_ok=True)
        with self._path(collection).open("w", encoding="utf-8") as f:
            json.dump(self._collections[collection], f, indent=2, default=str)

    # -------------------------------------------------------------------------
    # PersistenceAdapter
    # -------------------------------------------------------------------------

    async def get_document(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        document = self._collection(collection).get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def set_document(
        self,
        collection: str,
        doc_id: str,
        partial: dict[str, Any],
        merge: bool = True,
    ) -> None:
        docs = self._collection(collection)
        if merge and doc_id in docs:
            docs[doc_id] = {**docs[doc_id], **copy.deepcopy(partial)}
        else:
            docs[doc_id] = copy.deepcopy(partial)
        self._flush(collection)
        logger.debug(f"Wrote {collection}/{doc_id} ({len(partial)} keys, merge={merge})")

    async def query_documents(
        self,
        collection: str,
        field: str,
        op: QueryOp,
        value: Any,
    ) -> list[dict[str, Any]]:
        results = []
        for doc_id, document in self._collection(collection).items():
            current = document.get(field)
            if op == "==":
                matched = current == value
            elif op == "array-contains":
                matched = isinstance(current, list) and value in current
            else:
                raise ValueError(f"Unsupported query operator: {op}")
            if matched:
                results.append({**copy.deepcopy(document), "id": doc_id})
        return results

    async def delete_document(self, collection: str, doc_id: str) -> None:
        docs = self._collection(collection)
        if docs.pop(doc_id, None) is not None:
            self._flush(collection)
