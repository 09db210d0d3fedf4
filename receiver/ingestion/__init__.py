"""Ingestion pipeline: validation, deduplication, normalization and error taxonomy."""

from receiver.ingestion.errors import IngestionError
from receiver.ingestion.schemas import DataEntry, PersistResult

__all__ = ["DataEntry", "IngestionError", "PersistResult"]
