"""data-receiver: authenticated, rate-limited JSON ingestion with dual-store persistence."""

__version__ = "0.1.0"
