"""
Dependency injection for FastAPI endpoints.
"""

from receiver.config.settings import get_settings
from receiver.ingestion.deduplication import DuplicateDetector
from receiver.ratelimit.limiter import RateLimiter, create_rate_limiter
from receiver.services.ingestion_service import IngestionService
from receiver.sources.service import SourceDirectory
from receiver.storage.blob import BlobStore, create_blob_store
from receiver.storage.database import Database, close_database
from receiver.storage.database import get_database as _get_global_database
from receiver.storage.persister import DualStorePersister
from receiver.storage.repository import DataEntryRepository

# Global service instances (initialized on first request)
_rate_limiter: RateLimiter | None = None
_blob_store: BlobStore | None = None
_ingestion_service: IngestionService | None = None


async def get_database() -> Database:
    """Get the shared, connected database."""
    return await _get_global_database()


def get_rate_limiter() -> RateLimiter | None:
    """Get the configured rate limiter, or None when rate limiting is disabled."""
    global _rate_limiter

    settings = get_settings()
    if not settings.rate_limit_enabled:
        return None
    if _rate_limiter is None:
        _rate_limiter = create_rate_limiter(settings)
    return _rate_limiter


def get_blob_store() -> BlobStore:
    """Get the configured blob backend."""
    global _blob_store

    if _blob_store is None:
        _blob_store = create_blob_store(get_settings())
    return _blob_store


async def get_ingestion_service() -> IngestionService:
    """
    Get ingestion service instance.

    Creates a singleton wired to the shared database, blob store and
    rate limiter.
    """
    global _ingestion_service

    if _ingestion_service is None:
        settings = get_settings()
        database = await get_database()
        repository = DataEntryRepository(database)

        _ingestion_service = IngestionService(
            directory=SourceDirectory(database),
            detector=DuplicateDetector(
                repository,
                identity_field=settings.dedup_identity_field,
                window_hours=settings.dedup_window_hours,
            ),
            persister=DualStorePersister(get_blob_store(), repository),
            rate_limiter=get_rate_limiter(),
            batch_max_items=settings.batch_max_items,
        )

    return _ingestion_service


async def cleanup_dependencies() -> None:
    """Clean up global dependencies on shutdown."""
    global _rate_limiter, _blob_store, _ingestion_service

    if _ingestion_service is not None:
        await _ingestion_service.wait_for_background()
        _ingestion_service = None

    if _rate_limiter is not None:
        await _rate_limiter.close()
        _rate_limiter = None

    _blob_store = None
    await close_database()
