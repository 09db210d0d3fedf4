"""Service layer."""

from receiver.services.ingestion_service import IngestionRequest, IngestionService

__all__ = ["IngestionRequest", "IngestionService"]
