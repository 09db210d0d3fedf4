"""
OpenTelemetry tracing for the ingestion pipeline.

Provides:
- setup_tracing(): Initialize TracerProvider with OTLP exporter
- get_tracer(): Get a named tracer instance
- traced(): Context manager creating a span per pipeline stage
- add_trace_context: structlog processor that injects trace_id/span_id into logs

Usage:
    from receiver.observability.tracing import setup_tracing, get_tracer, traced

    setup_tracing("data-receiver", "http://localhost:4317")
    tracer = get_tracer("receiver.ingestion")

    with traced(tracer, "ingest.persist", {"source.id": source_id}):
        ...
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import StatusCode, Tracer
from opentelemetry.trace.propagation import get_current_span

logger = logging.getLogger(__name__)

# Module-level flag so callers can check without importing settings
_tracing_enabled = False


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Initialize the OpenTelemetry TracerProvider.

    Uses OTLP gRPC exporter by default. Pass a custom exporter for testing
    (e.g., InMemorySpanExporter).

    Args:
        service_name: Logical service name (appears in Jaeger/Tempo).
        otlp_endpoint: OTLP collector endpoint (e.g., "http://localhost:4317").
        exporter: Optional custom exporter (overrides OTLP).

    Returns:
        The configured TracerProvider.
    """
    global _tracing_enabled

    resource = Resource.create({"service.name": service_name})
    provider = TracerProvider(resource=resource)

    if exporter is None:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        exporter = OTLPSpanExporter(
            endpoint=otlp_endpoint or "http://localhost:4317",
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(exporter))
    else:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    _tracing_enabled = True
    logger.info(
        "OpenTelemetry tracing initialized: service=%s endpoint=%s",
        service_name,
        otlp_endpoint or "(custom exporter)",
    )
    return provider


def get_tracer(name: str) -> Tracer:
    """
    Get a named tracer from the global TracerProvider.

    Safe to call even when tracing is not enabled; returns a no-op tracer.
    """
    return trace.get_tracer(name)


def is_tracing_enabled() -> bool:
    """Check whether tracing has been initialized."""
    return _tracing_enabled


@contextmanager
def traced(
    tracer: Tracer,
    name: str,
    attributes: dict[str, Any] | None = None,
):
    """
    Context manager that creates a span and records exceptions.

    Usage:
        tracer = get_tracer("ingestion")
        with traced(tracer, "ingest.validate", {"source.id": "abc"}):
            ...
    """
    with tracer.start_as_current_span(name) as span:
        if attributes:
            for k, v in attributes.items():
                span.set_attribute(k, v)
        try:
            yield span
        except Exception as exc:
            span.set_status(StatusCode.ERROR, str(exc))
            span.record_exception(exc)
            raise


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Structlog processor that injects trace_id and span_id into log entries.

    Add to structlog's processor chain so that every log message includes
    the active trace context for log-trace correlation.
    """
    span = get_current_span()
    ctx = span.get_span_context()

    if ctx.is_valid:
        event_dict["trace_id"] = f"{ctx.trace_id:032x}"
        event_dict["span_id"] = f"{ctx.span_id:016x}"

    return event_dict
