"""
Payload validation against a source's declared schema.

Type checks use a closed classification over decoded JSON values, so a
payload classifies the same way no matter which runtime produced it.
"""

from dataclasses import dataclass, field
from typing import Any

from receiver.sources.schemas import FieldType, SourceSchema

UNKNOWN_TYPE = "unknown"


@dataclass
class ValidationResult:
    """Outcome of validating one payload."""

    valid: bool
    errors: list[str] = field(default_factory=list)


def classify(value: Any) -> str:
    """Classify a decoded JSON value into a schema type tag.

    ``bool`` is checked before numbers because it subclasses ``int``.
    Anything outside the supported tags (``None`` included) is
    ``"unknown"``.
    """
    if isinstance(value, bool):
        return FieldType.BOOLEAN.value
    if isinstance(value, (int, float)):
        return FieldType.NUMBER.value
    if isinstance(value, str):
        return FieldType.STRING.value
    if isinstance(value, list):
        return FieldType.ARRAY.value
    if isinstance(value, dict):
        return FieldType.OBJECT.value
    return UNKNOWN_TYPE


def _is_blank(payload: dict[str, Any], name: str) -> bool:
    """A field counts as absent when missing, null or the empty string."""
    value = payload.get(name)
    return value is None or value == ""


def validate(payload: dict[str, Any], schema: SourceSchema | None) -> ValidationResult:
    """Validate ``payload`` against ``schema``.

    Required fields must be present and non-empty. Typed fields are only
    checked when present and non-empty; an optional field that is left
    out never produces a type error. A missing or empty schema accepts
    everything.
    """
    if schema is None or schema.is_empty:
        return ValidationResult(valid=True)

    errors: list[str] = []

    for name in schema.required_fields:
        if _is_blank(payload, name):
            errors.append(f"Missing required field: {name}")

    for name, expected in schema.field_types.items():
        if _is_blank(payload, name):
            continue
        actual = classify(payload[name])
        if actual != expected.value:
            errors.append(f"Field {name} should be type {expected.value}, got {actual}")

    return ValidationResult(valid=not errors, errors=errors)
