"""
Tests for OpenTelemetry tracing module.

Verifies:
- TracerProvider setup with InMemorySpanExporter
- traced() context manager creates spans and records exceptions
- Structlog processor adds trace_id/span_id to log entries
- Pipeline stages emit spans
"""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from receiver.ingestion.deduplication import DuplicateDetector
from receiver.ingestion.schemas import PersistResult
from receiver.observability.tracing import (
    add_trace_context,
    get_tracer,
    is_tracing_enabled,
    setup_tracing,
    traced,
)
from receiver.services.ingestion_service import IngestionRequest, IngestionService
from receiver.sources.schemas import Source, SourceSchema

# OTel's global TracerProvider can only be set once per process, so we
# initialize it once and clear the exporter between tests.
_exporter = InMemorySpanExporter()
_provider = setup_tracing("test-service", exporter=_exporter)


@pytest.fixture(autouse=True)
def _clear_spans():
    """Clear exported spans before each test."""
    _exporter.clear()
    yield
    _exporter.clear()


class TestSetupTracing:
    def test_setup_enables_tracing(self):
        assert is_tracing_enabled()


class TestTracedContextManager:
    """Tests for the traced() convenience context manager."""

    def test_traced_creates_span(self):
        tracer = get_tracer("test")

        with traced(tracer, "my_operation", {"key": "value"}):
            pass

        spans = _exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].name == "my_operation"
        assert spans[0].attributes.get("key") == "value"

    def test_traced_records_exception(self):
        tracer = get_tracer("test")

        with pytest.raises(ValueError, match="test error"):
            with traced(tracer, "failing_op"):
                raise ValueError("test error")

        spans = _exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].status.status_code.name == "ERROR"
        assert any(e.name == "exception" for e in spans[0].events)


class TestAddTraceContext:
    def test_adds_ids_inside_span(self):
        tracer = get_tracer("test")

        with tracer.start_as_current_span("op") as span:
            event = add_trace_context(None, "info", {"event": "hello"})
            expected = f"{span.get_span_context().trace_id:032x}"

        assert event["trace_id"] == expected
        assert len(event["span_id"]) == 16

    def test_no_ids_outside_span(self):
        event = add_trace_context(None, "info", {"event": "hello"})
        assert "trace_id" not in event


class TestPipelineSpans:
    @pytest.mark.asyncio
    async def test_stages_emit_spans(self, sample_source: Source, received_at: datetime):
        directory = AsyncMock()
        directory.resolve = AsyncMock(return_value=sample_source)
        directory.get_schema = AsyncMock(return_value=SourceSchema())
        repository = AsyncMock()
        repository.find_first_identity_since = AsyncMock(return_value=None)
        persister = AsyncMock()
        persister.persist = AsyncMock(
            return_value=PersistResult(entry_id="x", file_name="f", file_path="p", blob_stored=True)
        )
        service = IngestionService(directory, DuplicateDetector(repository), persister)

        await service.ingest(
            IngestionRequest(
                headers={"x-api-key": "k"},
                body=b'{"id": "x", "email": "a@example.com"}',
                client_ip="10.0.0.1",
                received_at=received_at,
            )
        )
        await service.wait_for_background()

        names = [span.name for span in _exporter.get_finished_spans()]
        assert names == [
            "ingest.authenticate",
            "ingest.deduplicate",
            "ingest.validate",
            "ingest.persist",
        ]
