"""
Prometheus metrics for monitoring the ingestion endpoint.

Defines and exposes metrics for:
- Ingestion outcomes by response code
- Persisted entries and blob-store failures
- Duplicate rejections and rate-limit denials
- Per-stage pipeline latency

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    start_http_server,
)

from receiver.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the data receiver.

    Usage:
        metrics = get_metrics()
        metrics.record_outcome("SUCCESS")
        metrics.record_stage_latency("persist", 0.05)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.ingestion_requests = Counter(
            "data_receiver_requests_total",
            "Ingestion requests by outcome code",
            ["outcome"],  # SUCCESS, AUTH_FAILED, VALIDATION_ERROR, ...
        )

        self.entries_persisted = Counter(
            "data_receiver_entries_persisted_total",
            "Data entries written to the relational store",
        )

        self.blob_write_failures = Counter(
            "data_receiver_blob_write_failures_total",
            "Blob-store writes that failed and were skipped",
        )

        self.duplicates_rejected = Counter(
            "data_receiver_duplicates_rejected_total",
            "Submissions rejected as duplicates within the dedup window",
        )

        self.rate_limited = Counter(
            "data_receiver_rate_limited_total",
            "Requests denied by the rate limiter",
        )

        self.stage_latency = Histogram(
            "data_receiver_stage_latency_seconds",
            "Time spent in each ingestion stage",
            ["stage"],  # authenticate, deduplicate, validate, persist
            buckets=LATENCY_BUCKETS,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """Start Prometheus metrics HTTP server."""
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    def record_outcome(self, outcome: str, count: int = 1) -> None:
        """Record a terminal ingestion outcome (SUCCESS or an error code)."""
        self.ingestion_requests.labels(outcome=outcome).inc(count)

    def record_stage_latency(self, stage: str, latency: float) -> None:
        """Record latency of a pipeline stage in seconds."""
        self.stage_latency.labels(stage=stage).observe(latency)

    def record_persisted(self, blob_stored: bool) -> None:
        """Record a persisted entry and whether its blob copy was written."""
        self.entries_persisted.inc()
        if not blob_stored:
            self.blob_write_failures.inc()

    def record_duplicate(self) -> None:
        self.duplicates_rejected.inc()

    def record_rate_limited(self) -> None:
        self.rate_limited.inc()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
