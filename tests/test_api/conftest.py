"""Shared fixtures for API tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from receiver.api.app import create_app
from receiver.api.dependencies import get_ingestion_service
from receiver.config.settings import Settings, get_settings
from receiver.ingestion.deduplication import DuplicateDetector
from receiver.ratelimit.limiter import InMemoryRateLimiter
from receiver.services.ingestion_service import IngestionService
from receiver.sources.service import SourceDirectory
from receiver.storage.blob import FilesystemBlobStore
from receiver.storage.persister import DualStorePersister
from receiver.storage.repository import DataEntryRepository

API_KEY = "key_live_abc123"
RATE_LIMIT = 10


@pytest.fixture
def api_settings(tmp_path, monkeypatch) -> Settings:
    """Environment for the app factory: no Postgres, no Redis, local blobs."""
    monkeypatch.setenv("BLOB_BACKEND", "filesystem")
    monkeypatch.setenv("BLOB_LOCAL_PATH", str(tmp_path / "blobs"))
    monkeypatch.setenv("RATE_LIMIT_ENABLED", "false")
    monkeypatch.setenv("TRACING_ENABLED", "false")
    monkeypatch.setenv("TRUST_FORWARDED_FOR", "false")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def sample_db_row() -> dict:
    """A dict mimicking an asyncpg Record for the active source."""
    return {
        "id": "src_1",
        "user_id": "user_1",
        "name": "Greenhouse sensors",
        "api_key": API_KEY,
        "active": True,
        "last_active": None,
        "data_count": 0,
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
    }


@pytest.fixture
def api_database(mock_database: AsyncMock, sample_db_row: dict) -> AsyncMock:
    """Mock database that knows exactly one active API key."""

    async def fetch(query, api_key):
        return [sample_db_row] if api_key == API_KEY else []

    mock_database.fetch = AsyncMock(side_effect=fetch)
    return mock_database


@pytest.fixture
def blob_store(tmp_path) -> FilesystemBlobStore:
    return FilesystemBlobStore(tmp_path / "blobs")


@pytest.fixture
def ingestion_service(api_database: AsyncMock, blob_store: FilesystemBlobStore) -> IngestionService:
    """Real pipeline over a mocked database."""
    repository = DataEntryRepository(api_database)
    return IngestionService(
        directory=SourceDirectory(api_database),
        detector=DuplicateDetector(repository),
        persister=DualStorePersister(blob_store, repository),
        rate_limiter=InMemoryRateLimiter(limit=RATE_LIMIT, window_seconds=60),
        batch_max_items=5,
    )


@pytest.fixture
def client(api_settings: Settings, ingestion_service: IngestionService):
    """Create test client with the ingestion service overridden."""
    app = create_app()
    app.dependency_overrides[get_ingestion_service] = lambda: ingestion_service

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
