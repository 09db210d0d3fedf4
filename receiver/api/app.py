"""
FastAPI application factory.
"""

import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from receiver import __version__
from receiver.api.cors import CORS_HEADERS
from receiver.api.dependencies import cleanup_dependencies, get_blob_store, get_rate_limiter
from receiver.api.middleware.timeout import TimeoutMiddleware
from receiver.api.routes import data, health
from receiver.config.settings import get_settings
from receiver.ingestion.errors import IngestionError, ServerError

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Data receiver starting up")

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from receiver.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )

    rate_limiter = get_rate_limiter()
    if rate_limiter is not None:
        await rate_limiter.start()

    try:
        await get_blob_store().ensure_ready()
    except Exception as e:
        # Blob writes are best-effort; keep serving and let /health report it
        logger.warning("Blob store not ready", error=str(e))

    yield

    logger.info("Data receiver shutting down")
    await cleanup_dependencies()


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    openapi_tags = [
        {"name": "ingestion", "description": "Authenticated JSON data ingestion"},
        {"name": "health", "description": "Service health checks"},
    ]

    app = FastAPI(
        title="Data Receiver API",
        description="""
Public ingestion endpoint for registered data sources.

## Authentication

Send the source's API key in the `X-API-Key` header
(or `Authorization: Bearer <key>`).

## Limits

Requests are rate limited per client address using a sliding window.
Every response past the rate check carries `X-RateLimit-*` headers.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        openapi_tags=openapi_tags,
    )

    # Request timeout middleware (must be added before logging middleware
    # so timeout wraps the entire request lifecycle)
    if settings.request_timeout_seconds > 0:
        app.add_middleware(
            TimeoutMiddleware,
            timeout_seconds=settings.request_timeout_seconds,
        )

    # Request logging, correlation ID, and tracing middleware
    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        from receiver.observability.tracing import get_tracer, is_tracing_enabled

        request_id = (
            request.headers.get("X-Request-ID")
            or request.headers.get("X-Correlation-ID")
            or str(uuid.uuid4())
        )

        structlog.contextvars.bind_contextvars(request_id=request_id)

        start_time = time.perf_counter()

        try:
            if is_tracing_enabled():
                tracer = get_tracer("data-receiver.api")
                with tracer.start_as_current_span(
                    f"{request.method} {request.url.path}",
                    attributes={
                        "http.method": request.method,
                        "http.route": request.url.path,
                        "http.request_id": request_id,
                    },
                ) as span:
                    response = await call_next(request)
                    duration = time.perf_counter() - start_time
                    span.set_attribute("http.status_code", response.status_code)
                    span.set_attribute("http.duration_ms", round(duration * 1000, 2))
            else:
                response = await call_next(request)
                duration = time.perf_counter() - start_time

            response.headers["X-Request-ID"] = request_id

            logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    # Exception handlers
    @app.exception_handler(IngestionError)
    async def ingestion_error_handler(request: Request, exc: IngestionError):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_body(),
            headers={**CORS_HEADERS, **exc.headers},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content=ServerError().to_body(),
            headers=CORS_HEADERS,
        )

    # Include routers
    app.include_router(data.router, tags=["ingestion"])
    app.include_router(health.router, tags=["health"])

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": "Data Receiver API",
            "version": __version__,
            "docs": "/docs",
        }

    return app
