"""
Request deadline middleware.

Wraps each request in an asyncio timeout so a hung dependency cannot hold
a handler indefinitely. Expiry cancels the in-flight handler at its
current await and returns the standard SERVER_ERROR envelope with 504.
Health checks are excluded.
"""

import asyncio

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from receiver.api.cors import CORS_HEADERS
from receiver.ingestion.errors import ServerError

logger = structlog.get_logger(__name__)

# Paths excluded from timeout enforcement
_EXCLUDED_PREFIXES = ("/health",)


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Enforce a maximum request duration, returning 504 on timeout."""

    def __init__(self, app, timeout_seconds: float = 30.0):
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next):
        if any(request.url.path.startswith(p) for p in _EXCLUDED_PREFIXES):
            return await call_next(request)

        try:
            async with asyncio.timeout(self.timeout_seconds):
                return await call_next(request)
        except TimeoutError:
            logger.warning(
                "Request deadline exceeded",
                path=request.url.path,
                method=request.method,
                timeout_seconds=self.timeout_seconds,
            )
            error = ServerError(details=f"Request deadline of {self.timeout_seconds}s exceeded")
            return JSONResponse(
                status_code=504,
                content=error.to_body(),
                headers=CORS_HEADERS,
            )
