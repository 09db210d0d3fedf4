"""
Error taxonomy for the ingestion endpoint.

Every gate failure raises an IngestionError subclass carrying a stable
``code``, an HTTP status and the JSON envelope returned to the caller.
The API layer renders them; nothing below it builds HTTP responses.
"""

from typing import Any, final

AUTH_FAILED = "AUTH_FAILED"
VALIDATION_ERROR = "VALIDATION_ERROR"
DUPLICATE_EMAIL = "DUPLICATE_EMAIL"
RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
SERVER_ERROR = "SERVER_ERROR"


class IngestionError(Exception):
    """Base class for terminal ingestion failures."""

    code: str = SERVER_ERROR
    status_code: int = 500
    default_message: str = "An internal server error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: Any = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        self.headers = headers or {}
        super().__init__(self.message)

    def to_body(self) -> dict[str, Any]:
        """Build the JSON envelope for this failure."""
        body: dict[str, Any] = {
            "success": False,
            "message": self.message,
            "code": self.code,
        }
        if self.details is not None:
            body["details"] = self.details
        return body


class ServerError(IngestionError):
    """Unexpected failure in a downstream dependency."""


class PersistenceError(ServerError):
    """The relational insert failed; the entry was not recorded."""

    def __init__(self, details: str = "Failed to store data in database") -> None:
        super().__init__(details=details)


class MissingAPIKey(IngestionError):
    """No API key was supplied in any accepted header."""

    code = AUTH_FAILED
    status_code = 401
    default_message = "API key is required"

    def __init__(self) -> None:
        super().__init__(details="Provide your API key in the X-API-Key header")


@final
class AuthenticationFailed(IngestionError):
    """The supplied key does not resolve to an active source.

    Raised identically for unknown keys, inactive sources and lookup
    failures; it accepts no arguments so no call site can attach
    information that tells those cases apart.
    """

    code = AUTH_FAILED
    status_code = 403
    default_message = "Invalid API key or inactive source"

    def __init__(self) -> None:
        super().__init__()


class InvalidPayload(IngestionError):
    """The request body is not a JSON object."""

    code = VALIDATION_ERROR
    status_code = 400
    default_message = "Invalid JSON format"


class SchemaValidationFailed(IngestionError):
    """The payload violates the source's declared schema."""

    code = VALIDATION_ERROR
    status_code = 400
    default_message = "Data validation failed"

    def __init__(self, errors: list[str]) -> None:
        super().__init__()
        self.errors = errors

    def to_body(self) -> dict[str, Any]:
        body = super().to_body()
        body["errors"] = self.errors
        return body


class DuplicateSubmission(IngestionError):
    """The identity value was already submitted inside the dedup window."""

    code = DUPLICATE_EMAIL
    status_code = 409

    def __init__(self, field: str, value: str, previous_submission: str, window_hours: int) -> None:
        super().__init__(
            f"A submission with this {field} was already received in the last {window_hours} hours",
            details={field: value, "previousSubmission": previous_submission},
        )


class RateLimitExceeded(IngestionError):
    """The client exceeded its request quota for the current window."""

    code = RATE_LIMIT_EXCEEDED
    status_code = 429

    def __init__(self, retry_after: int, headers: dict[str, str]) -> None:
        super().__init__(
            f"Rate limit exceeded. Try again in {retry_after} seconds",
            headers=headers,
        )
        self.retry_after = retry_after
