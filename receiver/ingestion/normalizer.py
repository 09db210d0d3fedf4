"""
Payload normalization.

Assigns identity and a canonical timestamp, attaches provenance, and
splits the caller's fields into the user-facing ``metadata`` view.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from receiver.ingestion.schemas import DataEntry
from receiver.sources.schemas import Source

logger = logging.getLogger(__name__)

# Keys that carry identity or provenance rather than user data
RESERVED_KEYS = frozenset({
    "id",
    "timestamp",
    "sourceId",
    "source_id",
    "userId",
    "user_id",
    "sensorId",
    "sensor_id",
    "clientIp",
    "receivedAt",
})

# Numeric timestamps at or above this are taken as epoch milliseconds
_EPOCH_MS_THRESHOLD = 1e11


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a caller-supplied timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (a trailing ``Z`` included; naive values are
    read as UTC) and epoch numbers in seconds or milliseconds. Returns
    None for anything else.
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000 if abs(value) >= _EPOCH_MS_THRESHOLD else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)

        if isinstance(value, str) and value.strip():
            parsed = datetime.fromisoformat(value.strip())
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None

    return None


def _coerce_id(value: Any) -> str | None:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _identity_value(payload: dict[str, Any], field: str) -> str | None:
    value = payload.get(field)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize(
    payload: dict[str, Any],
    source: Source,
    client_ip: str,
    received_at: datetime,
    identity_field: str = "email",
) -> DataEntry:
    """Turn an accepted payload into a DataEntry. Never fails."""
    # Row and blob path use the string form; the response echoes the original value
    caller_id = payload.get("id")
    entry_id = _coerce_id(caller_id)
    if entry_id is None:
        caller_id = None
        entry_id = str(uuid.uuid4())

    timestamp = parse_timestamp(payload.get("timestamp"))
    if timestamp is None:
        if payload.get("timestamp") not in (None, ""):
            logger.debug("Unparseable timestamp %r, using arrival time", payload.get("timestamp"))
        timestamp = received_at

    sensor_id = _coerce_id(payload.get("sensorId")) or _coerce_id(payload.get("sensor_id"))

    metadata = {k: v for k, v in payload.items() if k not in RESERVED_KEYS}

    return DataEntry(
        id=entry_id,
        caller_id=caller_id,
        source_id=source.id,
        user_id=source.user_id,
        timestamp=timestamp,
        received_at=received_at,
        client_ip=client_ip or "unknown",
        sensor_id=sensor_id,
        identity=_identity_value(payload, identity_field),
        payload=dict(payload),
        metadata=metadata,
    )
