"""
Identity-based duplicate detection.

Rejects a payload whose identity value (an e-mail address by default)
was already accepted for the same owner inside a trailing window. The
check is owner-scoped, so two sources of one account collide.

Two concurrent requests carrying the same identity may both pass; the
relational store is the authority and no lock is taken.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from receiver.storage.repository import DataEntryRepository

logger = logging.getLogger(__name__)


@dataclass
class DuplicateResult:
    """Result of duplicate detection."""

    is_duplicate: bool
    identity: str | None = None
    previous_submission: datetime | None = None


class DuplicateDetector:
    """Looks up prior submissions of an identity value for one owner."""

    def __init__(
        self,
        repository: DataEntryRepository,
        identity_field: str = "email",
        window_hours: int = 24,
    ):
        self._repo = repository
        self.identity_field = identity_field
        self.window = timedelta(hours=window_hours)

    def identity_of(self, payload: dict[str, Any]) -> str | None:
        """Return the payload's identity value, or None if it carries none."""
        value = payload.get(self.identity_field)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    async def check(
        self,
        payload: dict[str, Any],
        owner_id: str,
        now: datetime,
    ) -> DuplicateResult:
        """
        Check whether ``payload`` repeats an identity seen since ``now - window``.

        Payloads without the identity field are never duplicates.
        """
        identity = self.identity_of(payload)
        if identity is None:
            return DuplicateResult(is_duplicate=False)

        previous = await self._repo.find_first_identity_since(
            owner_id,
            self.identity_field,
            identity,
            now - self.window,
        )
        if previous is None:
            return DuplicateResult(is_duplicate=False, identity=identity)

        logger.info("Duplicate %s for owner %s", self.identity_field, owner_id)
        return DuplicateResult(
            is_duplicate=True,
            identity=identity,
            previous_submission=previous,
        )
