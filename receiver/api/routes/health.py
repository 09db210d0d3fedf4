"""
Health check endpoint covering the relational store, blob store and
rate-limit backend.
"""

import time
from collections.abc import Awaitable, Callable

import structlog
from fastapi import APIRouter, Depends

from receiver.api.dependencies import get_blob_store, get_database, get_rate_limiter
from receiver.api.models import ComponentHealth, HealthResponse
from receiver.ratelimit.limiter import RateLimiter
from receiver.storage.blob import BlobStore

router = APIRouter()
logger = structlog.get_logger(__name__)


async def _timed_check(check: Callable[[], Awaitable[bool]]) -> ComponentHealth:
    """Run a boolean health probe and measure its latency."""
    start = time.perf_counter()
    try:
        healthy = await check()
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="healthy" if healthy else "unhealthy",
            latency_ms=round(latency_ms, 2),
        )
    except Exception as e:
        latency_ms = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            status="unhealthy",
            latency_ms=round(latency_ms, 2),
            details={"error": str(e)},
        )


async def _check_database() -> bool:
    db = await get_database()
    return await db.health_check()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Check the health of the service and its dependencies.",
)
async def health_check(
    blob_store: BlobStore = Depends(get_blob_store),
    rate_limiter: RateLimiter | None = Depends(get_rate_limiter),
) -> HealthResponse:
    """
    Status logic:
    - unhealthy: database is down (nothing can be accepted)
    - degraded: blob store or rate-limit backend is down
    - healthy: all components operational
    """
    components: dict[str, ComponentHealth] = {
        "database": await _timed_check(_check_database),
        "blob_store": await _timed_check(blob_store.health_check),
    }
    if rate_limiter is not None:
        components["rate_limiter"] = await _timed_check(rate_limiter.health_check)

    if components["database"].status == "unhealthy":
        status = "unhealthy"
    elif any(c.status == "unhealthy" for c in components.values()):
        status = "degraded"
    else:
        status = "healthy"

    if status != "healthy":
        logger.warning("Health check not healthy", status=status)

    return HealthResponse(status=status, components=components)
