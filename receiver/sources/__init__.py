"""Sources: API-key directory, per-key schemas and activity stats."""

from receiver.sources.repository import SourcesRepository
from receiver.sources.schemas import FieldType, Source, SourceSchema
from receiver.sources.service import SourceDirectory, extract_api_key

__all__ = [
    "FieldType",
    "Source",
    "SourceDirectory",
    "SourceSchema",
    "SourcesRepository",
    "extract_api_key",
]
