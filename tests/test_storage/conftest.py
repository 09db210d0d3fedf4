"""Shared fixtures for storage tests."""

from datetime import datetime

import pytest

from receiver.ingestion.normalizer import normalize
from receiver.ingestion.schemas import DataEntry
from receiver.sources.schemas import Source


@pytest.fixture
def sample_entry(sample_source: Source, received_at: datetime) -> DataEntry:
    return normalize(
        {
            "id": "reading-1",
            "timestamp": "2025-03-01T10:00:00.250Z",
            "sensorId": "s-1",
            "temperature": 21.5,
            "email": "a@example.com",
        },
        sample_source,
        client_ip="10.0.0.1",
        received_at=received_at,
    )
