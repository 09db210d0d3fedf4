"""
Data models flowing through the ingestion pipeline.

A DataEntry is produced once per accepted payload and never mutated.
The archival blob and the relational row are both derived from it.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class DataEntry(BaseModel):
    """Normalized, persistable result of one accepted payload."""

    id: str = Field(..., description="Caller-supplied id, or a generated UUID")
    caller_id: Any = Field(
        default=None,
        description="The id exactly as the caller sent it, echoed back in responses",
    )
    source_id: str = Field(..., description="Owning source")
    user_id: str = Field(..., description="Owner of the source")
    timestamp: datetime = Field(..., description="Canonical UTC instant of the reading")
    received_at: datetime = Field(..., description="Server arrival time")
    client_ip: str = Field(default="unknown", description="Observed client address")
    sensor_id: str | None = Field(default=None, description="sensorId / sensor_id if supplied")
    identity: str | None = Field(
        default=None,
        description="Value of the dedup identity field (e.g. email) if supplied",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="The caller's original payload, untouched",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Payload minus identity and provenance keys",
    )

    @property
    def timestamp_iso(self) -> str:
        """Timestamp in the canonical ISO-8601 form used on the wire."""
        return to_iso(self.timestamp)

    def archive_record(self) -> dict[str, Any]:
        """The full normalized document written to blob storage.

        Includes provenance fields that are kept out of ``metadata``.
        """
        return {
            **self.payload,
            "id": self.id,
            "timestamp": self.timestamp_iso,
            "sourceId": self.source_id,
            "userId": self.user_id,
            "receivedAt": to_iso(self.received_at),
            "clientIp": self.client_ip,
        }

    def response_data(self) -> dict[str, Any]:
        """The ``data`` object returned to the caller on success."""
        return {
            **self.payload,
            "id": self.id if self.caller_id is None else self.caller_id,
            "timestamp": self.timestamp_iso,
            "sourceId": self.source_id,
        }


class PersistResult(BaseModel):
    """Outcome of the dual-store write."""

    entry_id: str
    file_name: str
    file_path: str
    blob_stored: bool


def to_iso(value: datetime) -> str:
    """Render a UTC datetime as ISO-8601 with millisecond precision and ``Z``."""
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
