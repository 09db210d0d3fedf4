"""
Response models for the ingestion API.

Used for OpenAPI documentation; handlers build the JSON envelopes
directly so field names stay exactly as callers expect them.
"""

from typing import Any

from pydantic import BaseModel, Field


class DataResponse(BaseModel):
    """200 envelope for a single accepted payload."""

    success: bool = True
    message: str = Field(default="Data received successfully")
    data: dict[str, Any] = Field(
        ...,
        description="id, timestamp and sourceId merged over the original payload fields",
    )


class BatchItemFailure(BaseModel):
    index: int
    message: str
    code: str
    errors: list[str] | None = None
    details: Any = None


class BatchData(BaseModel):
    receivedCount: int
    failedCount: int
    entries: list[dict[str, Any]]
    errors: list[BatchItemFailure] = Field(default_factory=list)


class BatchResponse(BaseModel):
    """200 envelope for a batch submission."""

    success: bool = True
    message: str = Field(default="Batch data received successfully")
    data: BatchData


class ErrorResponse(BaseModel):
    """Envelope for every ingestion failure."""

    success: bool = False
    message: str
    code: str = Field(
        ...,
        description="AUTH_FAILED, VALIDATION_ERROR, DUPLICATE_EMAIL, RATE_LIMIT_EXCEEDED or SERVER_ERROR",
    )
    errors: list[str] | None = Field(default=None, description="Itemized schema violations")
    details: Any = None


class MethodNotAllowedResponse(BaseModel):
    error: str


class ComponentHealth(BaseModel):
    """Health status of an individual infrastructure component."""

    status: str = Field(..., description="healthy or unhealthy")
    latency_ms: float | None = Field(default=None, description="Check latency in milliseconds")
    details: dict = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(
        ...,
        description="Overall service status: healthy, degraded, or unhealthy",
    )
    components: dict[str, ComponentHealth] = Field(default_factory=dict)
