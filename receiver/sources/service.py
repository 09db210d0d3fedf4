"""Source directory: API-key authentication, schema lookup and activity stats."""

import logging
import re
from collections.abc import Mapping

from receiver.ingestion.errors import AuthenticationFailed, MissingAPIKey
from receiver.sources.repository import SourcesRepository
from receiver.sources.schemas import Source, SourceSchema
from receiver.storage.database import Database

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"
AUTHORIZATION_HEADER = "authorization"

_BEARER_PREFIX = re.compile(r"^Bearer\s+", re.IGNORECASE)


def extract_api_key(headers: Mapping[str, str]) -> str | None:
    """Read the caller's API key from request headers.

    ``X-API-Key`` wins; otherwise the legacy ``Authorization`` header is
    accepted with any ``Bearer `` prefix stripped. Returns None when
    neither header carries a non-blank value.
    """
    api_key = (headers.get(API_KEY_HEADER) or "").strip()
    if api_key:
        return api_key

    authorization = headers.get(AUTHORIZATION_HEADER) or ""
    api_key = _BEARER_PREFIX.sub("", authorization).strip()
    return api_key or None


class SourceDirectory:
    """Resolves API keys to active sources and records their activity.

    Holds no cross-request state: every lookup goes to the database so
    deactivations and schema edits take effect on the next request.
    """

    def __init__(self, database: Database) -> None:
        self._repo = SourcesRepository(database)

    async def resolve(self, api_key: str | None) -> Source:
        """Return the active source for ``api_key``.

        Raises:
            MissingAPIKey: no key was supplied.
            AuthenticationFailed: the key is unknown, its source is
                inactive, or the lookup itself failed.
        """
        if not api_key:
            raise MissingAPIKey()

        try:
            source = await self._repo.get_active_by_api_key(api_key)
        except Exception as e:
            logger.error("Source lookup failed: %s", e)
            raise AuthenticationFailed() from None

        if source is None:
            logger.info("Rejected API key %s...", api_key[:4])
            raise AuthenticationFailed()

        return source

    async def get_schema(self, api_key: str) -> SourceSchema:
        """Fetch the schema currently declared for ``api_key``."""
        return await self._repo.get_schema(api_key)

    async def touch(self, source_id: str, count: int = 1) -> None:
        """Best-effort update of the source's last-activity stats.

        Failures are logged and swallowed; stats never fail a request.
        """
        try:
            updated = await self._repo.touch(source_id, count)
            if not updated:
                logger.warning("Stats update matched no source: %s", source_id)
        except Exception as e:
            logger.error("Failed to update stats for source %s: %s", source_id, e)
