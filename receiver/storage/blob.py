"""
Blob storage for archival copies of accepted payloads.

Defines the interface every blob backend implements, plus:
- SupabaseBlobStore: Supabase Storage bucket (production)
- FilesystemBlobStore: local directory tree (single node / development)

Objects live under ``<source_id>/<timestamp>_<entry_id>.json`` so a
source's archive lists chronologically.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from supabase import Client, create_client

from receiver.config.settings import Settings

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class BlobStoreError(Exception):
    """A blob backend rejected or failed a write."""


class BlobStore(ABC):
    """
    Abstract base class for blob backends.

    Writes are create-only: an existing object is never overwritten.
    """

    @abstractmethod
    async def put(self, path: str, data: bytes, content_type: str = JSON_CONTENT_TYPE) -> None:
        """
        Store ``data`` at ``path``.

        Raises:
            BlobStoreError: If the object could not be written.
        """

    async def ensure_ready(self) -> None:
        """Prepare the backend (create bucket or directory). Idempotent."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the backend is reachable."""


class SupabaseBlobStore(BlobStore):
    """Blob store backed by a Supabase Storage bucket.

    The supabase client is synchronous, so calls run in a worker thread
    to keep the event loop free.
    """

    def __init__(
        self,
        client: Client,
        bucket_name: str = "source-data",
        max_bytes: int = 1024 * 1024,
    ):
        self.client = client
        self.bucket_name = bucket_name
        self.max_bytes = max_bytes

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseBlobStore":
        if not settings.supabase_configured:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for the supabase blob backend")
        client = create_client(settings.supabase_url, settings.supabase_service_role_key)
        return cls(client, bucket_name=settings.blob_bucket, max_bytes=settings.blob_max_bytes)

    async def ensure_ready(self) -> None:
        """Create the private bucket if it does not exist yet."""
        try:
            await asyncio.to_thread(
                self.client.storage.create_bucket,
                self.bucket_name,
                options={"public": False, "file_size_limit": self.max_bytes},
            )
            logger.info(f"Created storage bucket {self.bucket_name}")
        except Exception as e:
            if "already exists" in str(e).lower():
                return
            logger.error(f"Bucket creation error for {self.bucket_name}: {e}")

    async def put(self, path: str, data: bytes, content_type: str = JSON_CONTENT_TYPE) -> None:
        if len(data) > self.max_bytes:
            raise BlobStoreError(f"Object of {len(data)} bytes exceeds limit of {self.max_bytes}")
        try:
            await asyncio.to_thread(
                self.client.storage.from_(self.bucket_name).upload,
                path,
                data,
                {"content-type": content_type, "upsert": "false"},
            )
        except Exception as e:
            raise BlobStoreError(f"Upload to {self.bucket_name}/{path} failed: {e}") from e

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self.client.storage.get_bucket, self.bucket_name)
            return True
        except Exception:
            return False


class FilesystemBlobStore(BlobStore):
    """Blob store writing objects as files beneath a root directory."""

    def __init__(self, root: str | Path, max_bytes: int = 1024 * 1024):
        self.root = Path(root)
        self.max_bytes = max_bytes

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise BlobStoreError(f"Path escapes blob root: {path}")
        return target

    async def ensure_ready(self) -> None:
        await asyncio.to_thread(self.root.mkdir, parents=True, exist_ok=True)

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        # "xb" refuses to overwrite an existing object
        with open(target, "xb") as f:
            f.write(data)

    async def put(self, path: str, data: bytes, content_type: str = JSON_CONTENT_TYPE) -> None:
        if len(data) > self.max_bytes:
            raise BlobStoreError(f"Object of {len(data)} bytes exceeds limit of {self.max_bytes}")
        target = self._resolve(path)
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            raise BlobStoreError(f"Write to {target} failed: {e}") from e

    async def health_check(self) -> bool:
        return self.root.is_dir()


def create_blob_store(settings: Settings) -> BlobStore:
    """Build the blob backend selected by ``BLOB_BACKEND``."""
    if settings.blob_backend == "supabase":
        return SupabaseBlobStore.from_settings(settings)
    return FilesystemBlobStore(settings.blob_local_path, max_bytes=settings.blob_max_bytes)
