"""Data models for the sources module."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class FieldType(str, Enum):
    """Closed set of type tags a schema may declare for a field."""

    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"


@dataclass
class Source:
    """A registered ingestion identity, bound to exactly one API key.

    ``user_id`` is the owning account; duplicate detection is scoped to it
    rather than to the individual source.
    """

    id: str
    user_id: str
    api_key: str
    name: str = ""
    active: bool = True
    last_active: datetime | None = None
    data_count: int = 0
    created_at: datetime | None = None


@dataclass
class SourceSchema:
    """Validation contract for a source's payloads.

    An empty schema (no required fields, no field types) imposes no
    constraints.
    """

    required_fields: list[str] = field(default_factory=list)
    field_types: dict[str, FieldType] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.required_fields and not self.field_types

    @classmethod
    def from_raw(cls, required_fields: Any, field_types: Any) -> "SourceSchema":
        """Build a schema from free-form stored JSON.

        Required field names are de-duplicated preserving order. Type tags
        outside the supported set are dropped with a warning, since a
        validator cannot enforce a type it cannot classify.
        """
        required: list[str] = []
        if isinstance(required_fields, list):
            for name in required_fields:
                if isinstance(name, str) and name not in required:
                    required.append(name)

        types: dict[str, FieldType] = {}
        if isinstance(field_types, dict):
            for name, tag in field_types.items():
                try:
                    types[str(name)] = FieldType(tag)
                except ValueError:
                    logger.warning("Ignoring unsupported type tag %r for field %s", tag, name)

        return cls(required_fields=required, field_types=types)

    @classmethod
    def from_legacy(cls, raw: Any) -> "SourceSchema":
        """Parse the camelCase ``{"requiredFields", "fieldTypes"}`` column format."""
        if not isinstance(raw, dict):
            return cls()
        return cls.from_raw(raw.get("requiredFields"), raw.get("fieldTypes"))
