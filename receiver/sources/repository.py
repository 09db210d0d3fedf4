"""Database repository for the sources and schema_configs tables."""

import json
import logging
from typing import Any

from receiver.sources.schemas import Source, SourceSchema
from receiver.storage.database import Database

logger = logging.getLogger(__name__)

# Sources and their dashboard-managed schemas
_CREATE_TABLE_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TABLE IF NOT EXISTS sources (
    id           TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    user_id      TEXT NOT NULL,
    name         TEXT NOT NULL DEFAULT '',
    api_key      TEXT NOT NULL,
    active       BOOLEAN NOT NULL DEFAULT TRUE,
    last_active  TIMESTAMPTZ,
    data_count   INTEGER NOT NULL DEFAULT 0,
    schema       JSONB,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_sources_api_key
    ON sources(api_key);
CREATE INDEX IF NOT EXISTS idx_sources_user_id
    ON sources(user_id);

CREATE TABLE IF NOT EXISTS schema_configs (
    id               TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
    api_key          TEXT UNIQUE REFERENCES sources(api_key) ON DELETE CASCADE ON UPDATE CASCADE,
    user_id          TEXT,
    name             TEXT NOT NULL DEFAULT '',
    description      TEXT,
    required_fields  JSONB NOT NULL DEFAULT '[]',
    field_types      JSONB NOT NULL DEFAULT '{}',
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

_SELECT_ACTIVE_BY_KEY_SQL = """
SELECT id, user_id, name, api_key, active, last_active, data_count, created_at
FROM sources
WHERE api_key = $1 AND active = TRUE
LIMIT 2
"""

_SELECT_SCHEMA_SQL = """
SELECT sc.required_fields, sc.field_types, s.schema AS legacy_schema
FROM sources s
LEFT JOIN schema_configs sc ON sc.api_key = s.api_key
WHERE s.api_key = $1
"""

_TOUCH_SQL = """
UPDATE sources
SET last_active = NOW(), data_count = data_count + $2
WHERE id = $1
"""


def _parse_json(value: Any) -> Any:
    """JSONB columns arrive as text; decode them once here."""
    if isinstance(value, str):
        return json.loads(value)
    return value


def _record_to_source(record) -> Source:
    """Convert an asyncpg Record to a Source dataclass."""
    return Source(
        id=record["id"],
        user_id=record["user_id"],
        name=record["name"],
        api_key=record["api_key"],
        active=record["active"],
        last_active=record["last_active"],
        data_count=record["data_count"],
        created_at=record["created_at"],
    )


class SourcesRepository:
    """Lookups and activity updates for registered sources."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_table(self) -> None:
        """Create the sources and schema_configs tables (idempotent)."""
        await self._db.execute(_CREATE_TABLE_SQL)
        logger.info("Sources tables ensured")

    async def get_active_by_api_key(self, api_key: str) -> Source | None:
        """Fetch the single active source owning ``api_key``.

        Returns None when there is no match, the source is inactive, or
        (against the unique index) more than one row matches.
        """
        rows = await self._db.fetch(_SELECT_ACTIVE_BY_KEY_SQL, api_key)
        if len(rows) != 1:
            if len(rows) > 1:
                logger.error("Multiple active sources share one API key")
            return None
        return _record_to_source(rows[0])

    async def get_schema(self, api_key: str) -> SourceSchema:
        """Load the declared schema for ``api_key``.

        A ``schema_configs`` row wins over the legacy ``sources.schema``
        column. No schema at all yields an empty (permissive) one.
        """
        row = await self._db.fetchrow(_SELECT_SCHEMA_SQL, api_key)
        if row is None:
            return SourceSchema()

        required_fields = _parse_json(row["required_fields"])
        field_types = _parse_json(row["field_types"])
        if required_fields is not None or field_types is not None:
            return SourceSchema.from_raw(required_fields, field_types)

        return SourceSchema.from_legacy(_parse_json(row["legacy_schema"]))

    async def touch(self, source_id: str, count: int = 1) -> bool:
        """Mark the source active now and bump its entry counter.

        Returns True if a row was updated.
        """
        result = await self._db.execute(_TOUCH_SQL, source_id, count)
        return result.endswith("1")
