"""
Ingestion orchestrator.

Runs one request through the gates in a fixed order and stops at the
first failure:

    rate limit -> authenticate -> parse -> deduplicate -> validate
      -> normalize -> persist -> touch stats (background)

Gate failures surface as IngestionError subclasses; the API layer turns
them into responses. Nothing here retries.
"""

import asyncio
import json
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from receiver.ingestion.deduplication import DuplicateDetector
from receiver.ingestion.errors import (
    DuplicateSubmission,
    IngestionError,
    InvalidPayload,
    RateLimitExceeded,
    SchemaValidationFailed,
)
from receiver.ingestion.normalizer import normalize
from receiver.ingestion.schemas import DataEntry, PersistResult, to_iso
from receiver.ingestion.validator import validate
from receiver.observability.metrics import get_metrics
from receiver.observability.tracing import get_tracer, traced
from receiver.ratelimit.limiter import RateLimitDecision, RateLimiter
from receiver.sources.schemas import Source, SourceSchema
from receiver.sources.service import SourceDirectory, extract_api_key
from receiver.storage.persister import DualStorePersister

logger = structlog.get_logger(__name__)
tracer = get_tracer("receiver.ingestion")


@dataclass
class IngestionRequest:
    """One inbound call, captured before any processing."""

    headers: Mapping[str, str]
    body: bytes
    client_ip: str
    received_at: datetime


@dataclass
class IngestionResult:
    """A successfully ingested payload."""

    entry: DataEntry
    persisted: PersistResult
    rate_limit: RateLimitDecision | None = None


@dataclass
class BatchItemError:
    index: int
    error: IngestionError

    def to_dict(self) -> dict[str, Any]:
        body = self.error.to_body()
        body.pop("success", None)
        return {"index": self.index, **body}


@dataclass
class BatchResult:
    """Per-item outcome of a batch submission."""

    accepted: list[IngestionResult] = field(default_factory=list)
    failed: list[BatchItemError] = field(default_factory=list)
    rate_limit: RateLimitDecision | None = None


def _reject_constant(token: str) -> Any:
    raise ValueError(f"Non-JSON constant {token}")


def _parse_object(body: bytes) -> dict[str, Any]:
    """Decode a request body that must be a JSON object.

    ``NaN`` and ``Infinity`` are not JSON and are rejected like any other
    malformed body.
    """
    try:
        payload = json.loads(body, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError):
        raise InvalidPayload() from None
    if not isinstance(payload, dict):
        raise InvalidPayload()
    return payload


class IngestionService:
    """Sequences the ingestion gates for single and batch submissions."""

    def __init__(
        self,
        directory: SourceDirectory,
        detector: DuplicateDetector,
        persister: DualStorePersister,
        rate_limiter: RateLimiter | None = None,
        batch_max_items: int = 100,
    ):
        self._directory = directory
        self._detector = detector
        self._persister = persister
        self._rate_limiter = rate_limiter
        self.batch_max_items = batch_max_items
        self._background_tasks: set[asyncio.Task] = set()  # prevent GC of fire-and-forget tasks

    # ── Gates ───────────────────────────────────────────────────

    async def _check_rate(self, client_ip: str) -> RateLimitDecision | None:
        if self._rate_limiter is None:
            return None
        decision = await self._rate_limiter.check(client_ip)
        if not decision.allowed:
            get_metrics().record_rate_limited()
            logger.warning("Rate limit exceeded", client_ip=client_ip, retry_after=decision.retry_after)
            raise RateLimitExceeded(decision.retry_after or 1, decision.headers())
        return decision

    async def _authenticate(self, headers: Mapping[str, str]) -> Source:
        start = time.perf_counter()
        with traced(tracer, "ingest.authenticate"):
            source = await self._directory.resolve(extract_api_key(headers))
        get_metrics().record_stage_latency("authenticate", time.perf_counter() - start)
        structlog.contextvars.bind_contextvars(source_id=source.id)
        return source

    async def _check_duplicate(self, payload: dict[str, Any], source: Source, now: datetime) -> None:
        start = time.perf_counter()
        with traced(tracer, "ingest.deduplicate", {"source.id": source.id}):
            result = await self._detector.check(payload, source.user_id, now)
        get_metrics().record_stage_latency("deduplicate", time.perf_counter() - start)
        if result.is_duplicate:
            get_metrics().record_duplicate()
            raise DuplicateSubmission(
                self._detector.identity_field,
                result.identity,
                to_iso(result.previous_submission),
                int(self._detector.window.total_seconds() // 3600),
            )

    def _validate(self, payload: dict[str, Any], schema: SourceSchema) -> None:
        with traced(tracer, "ingest.validate"):
            result = validate(payload, schema)
        if not result.valid:
            logger.info("Schema validation failed", errors=result.errors)
            raise SchemaValidationFailed(result.errors)

    async def _accept(
        self,
        payload: dict[str, Any],
        source: Source,
        schema: SourceSchema,
        request: IngestionRequest,
    ) -> IngestionResult:
        """Run one payload through dedup, validation, normalization and persistence."""
        await self._check_duplicate(payload, source, request.received_at)
        self._validate(payload, schema)

        entry = normalize(
            payload,
            source,
            client_ip=request.client_ip,
            received_at=request.received_at,
            identity_field=self._detector.identity_field,
        )

        start = time.perf_counter()
        with traced(tracer, "ingest.persist", {"source.id": source.id, "entry.id": entry.id}):
            persisted = await self._persister.persist(entry)
        get_metrics().record_stage_latency("persist", time.perf_counter() - start)

        return IngestionResult(entry=entry, persisted=persisted)

    # ── Stats ───────────────────────────────────────────────────

    def _touch_in_background(self, source_id: str, count: int) -> None:
        task = asyncio.create_task(self._directory.touch(source_id, count))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def wait_for_background(self) -> None:
        """Wait for pending stats updates (used on shutdown and in tests)."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    # ── Entry points ────────────────────────────────────────────

    async def ingest(self, request: IngestionRequest) -> IngestionResult:
        """Ingest a single payload.

        Raises:
            IngestionError: At the first gate that fails.
        """
        decision = await self._check_rate(request.client_ip)
        try:
            source = await self._authenticate(request.headers)
            payload = _parse_object(request.body)
            schema = await self._directory.get_schema(source.api_key)
            result = await self._accept(payload, source, schema, request)
        except IngestionError as e:
            get_metrics().record_outcome(e.code)
            if decision is not None:
                e.headers = {**decision.headers(), **e.headers}
            raise

        self._touch_in_background(source.id, 1)
        get_metrics().record_outcome("SUCCESS")
        logger.info(
            "Entry ingested",
            entry_id=result.entry.id,
            blob_stored=result.persisted.blob_stored,
        )
        result.rate_limit = decision
        return result

    async def ingest_batch(self, request: IngestionRequest) -> BatchResult:
        """Ingest ``{"data": [...]}``; each item succeeds or fails on its own.

        Rate limiting, authentication and envelope parsing apply to the
        whole batch and raise as in :meth:`ingest`.
        """
        decision = await self._check_rate(request.client_ip)
        try:
            source = await self._authenticate(request.headers)
            envelope = _parse_object(request.body)
            items = envelope.get("data")
            if not isinstance(items, list) or not items:
                raise InvalidPayload("Batch body must contain a non-empty \"data\" array")
            if len(items) > self.batch_max_items:
                raise InvalidPayload(f"Batch exceeds maximum of {self.batch_max_items} items")
            schema = await self._directory.get_schema(source.api_key)
        except IngestionError as e:
            get_metrics().record_outcome(e.code)
            if decision is not None:
                e.headers = {**decision.headers(), **e.headers}
            raise

        result = BatchResult(rate_limit=decision)
        for index, item in enumerate(items):
            try:
                if not isinstance(item, dict):
                    raise InvalidPayload("Batch item is not a JSON object")
                result.accepted.append(await self._accept(item, source, schema, request))
                get_metrics().record_outcome("SUCCESS")
            except IngestionError as e:
                get_metrics().record_outcome(e.code)
                result.failed.append(BatchItemError(index=index, error=e))

        if result.accepted:
            self._touch_in_background(source.id, len(result.accepted))

        logger.info(
            "Batch ingested",
            received=len(result.accepted),
            failed=len(result.failed),
        )
        return result
