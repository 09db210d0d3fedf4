"""Observability layer - logging, metrics, and tracing."""

from receiver.observability.logging import setup_logging
from receiver.observability.metrics import MetricsCollector, get_metrics
from receiver.observability.tracing import get_tracer, setup_tracing

__all__ = ["setup_logging", "MetricsCollector", "get_metrics", "setup_tracing", "get_tracer"]
