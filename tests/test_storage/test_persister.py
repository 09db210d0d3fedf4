"""Tests for dual-store persistence."""

import json
from unittest.mock import AsyncMock

import pytest

from receiver.ingestion.errors import PersistenceError
from receiver.ingestion.schemas import DataEntry
from receiver.storage.blob import BlobStoreError
from receiver.storage.persister import DualStorePersister, blob_file_name


@pytest.fixture
def blob_store() -> AsyncMock:
    store = AsyncMock()
    store.put = AsyncMock(return_value=None)
    return store


@pytest.fixture
def repository() -> AsyncMock:
    repo = AsyncMock()
    repo.insert = AsyncMock(return_value=None)
    return repo


@pytest.fixture
def persister(blob_store: AsyncMock, repository: AsyncMock) -> DualStorePersister:
    return DualStorePersister(blob_store, repository)


def test_blob_file_name(sample_entry: DataEntry) -> None:
    assert blob_file_name(sample_entry) == "2025-03-01T10-00-00-250Z_reading-1.json"


@pytest.mark.parametrize("caller_id", ["../../x", "../../../victim_src/planted", "a\\b", "."])
def test_blob_file_name_stays_one_segment(sample_entry: DataEntry, caller_id: str) -> None:
    entry = sample_entry.model_copy(update={"id": caller_id})

    name = blob_file_name(entry)

    assert "/" not in name
    assert "\\" not in name
    assert ".." not in name
    assert name.startswith("2025-03-01T10-00-00-250Z_")


class TestPersist:
    @pytest.mark.asyncio
    async def test_writes_blob_then_row(
        self,
        persister: DualStorePersister,
        blob_store: AsyncMock,
        repository: AsyncMock,
        sample_entry: DataEntry,
    ) -> None:
        result = await persister.persist(sample_entry)

        assert result.blob_stored is True
        assert result.file_path == "src_1/2025-03-01T10-00-00-250Z_reading-1.json"

        path, body = blob_store.put.call_args[0]
        assert path == result.file_path
        archived = json.loads(body)
        assert archived["id"] == "reading-1"
        assert archived["sourceId"] == "src_1"
        assert archived["userId"] == "user_1"
        assert archived["clientIp"] == "10.0.0.1"
        assert archived["receivedAt"] == "2025-03-01T12:00:00.000Z"

        repository.insert.assert_awaited_once_with(
            sample_entry,
            file_name=result.file_name,
            file_path=result.file_path,
        )

    @pytest.mark.asyncio
    async def test_traversal_id_stays_under_source_prefix(
        self,
        persister: DualStorePersister,
        blob_store: AsyncMock,
        repository: AsyncMock,
        sample_entry: DataEntry,
    ) -> None:
        entry = sample_entry.model_copy(update={"id": "../../x"})

        result = await persister.persist(entry)

        path, body = blob_store.put.call_args[0]
        assert path == "src_1/2025-03-01T10-00-00-250Z_______x.json"
        assert path == result.file_path
        assert result.entry_id == "../../x"
        assert json.loads(body)["id"] == "../../x"
        repository.insert.assert_awaited_once_with(entry, file_name=result.file_name, file_path=path)

    @pytest.mark.asyncio
    async def test_blob_failure_still_inserts(
        self,
        persister: DualStorePersister,
        blob_store: AsyncMock,
        repository: AsyncMock,
        sample_entry: DataEntry,
    ) -> None:
        blob_store.put.side_effect = BlobStoreError("bucket unavailable")

        result = await persister.persist(sample_entry)

        assert result.blob_stored is False
        repository.insert.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_relational_failure_raises(
        self,
        persister: DualStorePersister,
        repository: AsyncMock,
        sample_entry: DataEntry,
    ) -> None:
        repository.insert.side_effect = ConnectionError("db down")

        with pytest.raises(PersistenceError) as exc_info:
            await persister.persist(sample_entry)

        assert exc_info.value.details == "Failed to store data in database"
