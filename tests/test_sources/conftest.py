"""Shared fixtures for sources tests."""

from datetime import datetime, timezone

import pytest


@pytest.fixture
def sample_db_row() -> dict:
    """A dict mimicking an asyncpg Record for an active source."""
    return {
        "id": "src_1",
        "user_id": "user_1",
        "name": "Greenhouse sensors",
        "api_key": "key_live_abc123",
        "active": True,
        "last_active": None,
        "data_count": 7,
        "created_at": datetime(2025, 1, 1, tzinfo=timezone.utc),
    }
