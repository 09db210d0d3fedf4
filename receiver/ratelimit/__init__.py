"""Sliding-window rate limiting."""

from receiver.ratelimit.limiter import (
    InMemoryRateLimiter,
    RateLimitDecision,
    RateLimiter,
    RedisRateLimiter,
    create_rate_limiter,
)

__all__ = [
    "InMemoryRateLimiter",
    "RateLimitDecision",
    "RateLimiter",
    "RedisRateLimiter",
    "create_rate_limiter",
]
