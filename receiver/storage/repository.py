"""
Data entry repository.

The ``data_entries`` table is the system of record for accepted payloads.
Rows are inserted once and never updated by the ingestion path.
"""

import json
import logging
from datetime import datetime

from receiver.ingestion.schemas import DataEntry
from receiver.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS data_entries (
    id              TEXT PRIMARY KEY,
    source_id       TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    user_id         TEXT NOT NULL,
    file_name       TEXT NOT NULL,
    file_path       TEXT NOT NULL,
    timestamp       TIMESTAMPTZ NOT NULL,
    sensor_id       TEXT,
    identity_value  TEXT,
    metadata        JSONB NOT NULL DEFAULT '{}',
    created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_data_entries_source_timestamp
    ON data_entries(source_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_data_entries_user_timestamp
    ON data_entries(user_id, timestamp DESC);
"""

_INSERT_SQL = """
INSERT INTO data_entries (
    id, source_id, user_id, file_name, file_path,
    timestamp, sensor_id, identity_value, metadata
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
"""

_FIRST_IDENTITY_SQL = """
SELECT timestamp
FROM data_entries
WHERE user_id = $1
  AND timestamp >= $2
  AND lower(btrim(metadata->>$3)) = lower($4)
ORDER BY timestamp ASC
LIMIT 1
"""


class DataEntryRepository:
    """Insert and window queries over ``data_entries``."""

    def __init__(self, database: Database):
        self._db = database

    async def create_tables(self) -> None:
        """Create the data_entries table and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Data entries table ensured")

    async def insert(self, entry: DataEntry, file_name: str, file_path: str) -> None:
        """Insert the metadata row for ``entry``.

        Raises whatever the driver raises; the caller decides how a failed
        insert is reported.
        """
        await self._db.execute(
            _INSERT_SQL,
            entry.id,
            entry.source_id,
            entry.user_id,
            file_name,
            file_path,
            entry.timestamp,
            entry.sensor_id,
            entry.identity,
            json.dumps(entry.metadata),
        )

    async def find_first_identity_since(
        self,
        user_id: str,
        field: str,
        value: str,
        since: datetime,
    ) -> datetime | None:
        """Earliest timestamp of an owner's entry whose metadata ``field``
        equals ``value`` (trimmed, case-insensitive) at or after ``since``."""
        return await self._db.fetchval(_FIRST_IDENTITY_SQL, user_id, since, field, value)
