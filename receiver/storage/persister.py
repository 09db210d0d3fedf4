"""
Dual-store persistence for accepted entries.

Ordering is fixed and deliberately non-transactional:

1. Archive the full normalized record to the blob store. A failure here
   is logged and counted, and the write continues.
2. Insert the metadata row into the relational store. This row is the
   system of record; a failure here fails the request even when the
   blob was already written.
"""

import json
import logging
import re
import time

from receiver.ingestion.errors import PersistenceError
from receiver.ingestion.schemas import DataEntry, PersistResult
from receiver.observability.metrics import get_metrics
from receiver.storage.blob import BlobStore
from receiver.storage.repository import DataEntryRepository

logger = logging.getLogger(__name__)

# Anything outside this set in a caller id is replaced before it reaches a path
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def blob_file_name(entry: DataEntry) -> str:
    """``<timestamp>_<id>.json``, reduced to ``[A-Za-z0-9_-]`` so it stays one path segment.

    The id comes from the caller; ``/`` and ``..`` must not let a write leave
    the source's own prefix.
    """
    stamp = entry.timestamp_iso.replace(":", "-").replace(".", "-")
    safe_id = _UNSAFE_NAME_CHARS.sub("_", entry.id)
    return f"{stamp}_{safe_id}.json"


class DualStorePersister:
    """Writes each entry to blob storage, then to the relational store."""

    def __init__(self, blob_store: BlobStore, repository: DataEntryRepository):
        self._blobs = blob_store
        self._repo = repository

    async def persist(self, entry: DataEntry) -> PersistResult:
        """
        Persist ``entry`` to both stores.

        Returns:
            PersistResult noting whether the blob copy was stored.

        Raises:
            PersistenceError: If the relational insert failed.
        """
        file_name = blob_file_name(entry)
        file_path = f"{entry.source_id}/{file_name}"
        metrics = get_metrics()

        blob_stored = True
        start = time.perf_counter()
        try:
            body = json.dumps(entry.archive_record(), indent=2, default=str).encode("utf-8")
            await self._blobs.put(file_path, body)
        except Exception as e:
            blob_stored = False
            logger.error(f"Blob write failed for entry {entry.id}, continuing: {e}")
        metrics.record_stage_latency("blob_write", time.perf_counter() - start)

        start = time.perf_counter()
        try:
            await self._repo.insert(entry, file_name=file_name, file_path=file_path)
        except Exception as e:
            logger.error(f"Relational insert failed for entry {entry.id}: {e}")
            raise PersistenceError() from e
        finally:
            metrics.record_stage_latency("db_insert", time.perf_counter() - start)

        metrics.record_persisted(blob_stored)
        return PersistResult(
            entry_id=entry.id,
            file_name=file_name,
            file_path=file_path,
            blob_stored=blob_stored,
        )
