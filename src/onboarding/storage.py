"""
Blob store for uploaded documents (IRS letter, menus, assistant avatar).

Files are stored under `{owner_id}/{path}/{filename}` and addressed by the
URL the store returns; drafts only ever keep that URL.
"""

import logging
from pathlib import Path
from typing import Protocol, runtime_checkable

from supabase import Client

logger = logging.getLogger(__name__)


def blob_key(owner_id: str, path: str, filename: str) -> str:
    """
    Storage key for an uploaded file.

    Leading, trailing and doubled slashes in `path` are dropped and any
    directory part of `filename` is ignored.

    Raises:
        ValueError: `path` contains a `.` or `..` segment, or `filename`
            has no usable name.
    """
    segments = [s for s in (path or "").split("/") if s]
    if any(s in (".", "..") for s in segments):
        raise ValueError(f"Upload path may not contain '.' or '..' segments: {path!r}")
    name = Path(filename or "").name
    if name in ("", ".", ".."):
        raise ValueError(f"Invalid upload filename: {filename!r}")
    return "/".join([owner_id, *segments, name])


@runtime_checkable
class BlobStore(Protocol):
    """Accepts a file and a path, returns a retrievable URL."""

    async def store(
        self,
        owner_id: str,
        path: str,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        ...


class SupabaseBlobStore:
    """Uploads to a Supabase Storage bucket and returns the public URL."""

    def __init__(self, client: Client, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    async def store(
        self,
        owner_id: str,
        path: str,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        key = blob_key(owner_id, path, filename)
        bucket = self.client.storage.from_(self.bucket)
        bucket.upload(key, content, {"content-type": content_type, "upsert": "true"})
        url = bucket.get_public_url(key)
        logger.info(f"Uploaded {key} ({len(content)} bytes)")
        return url


class LocalBlobStore:
    """Writes files below a directory and returns file:// URLs."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    async def store(
        self,
        owner_id: str,
        path: str,
        filename: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        target = self.root / blob_key(owner_id, path, filename)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return target.resolve().as_uri()


def get_blob_store() -> BlobStore:
    """Blob store matching the configured storage backend."""
    from onboarding.config import settings

    if settings.storage_backend == "supabase":
        from onboarding.db.client import get_service_client
        return SupabaseBlobStore(get_service_client(), settings.storage_bucket)
    return LocalBlobStore(settings.local_data_dir / "blobs")
