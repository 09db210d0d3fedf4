"""
Sliding-window rate limiting keyed by client identifier.

Each check prunes timestamps older than the window, records the current
request, then compares the in-window count against the limit. Denied
requests are recorded too, so a client that keeps hammering stays
blocked until it backs off.

Backends:
- InMemoryRateLimiter: per-process map guarded by an asyncio.Lock, with a
  periodic sweep that evicts idle identifiers. Accurate for one instance
  only; replicas each enforce their own budget.
- RedisRateLimiter: one sorted set per identifier, updated atomically in a
  MULTI/EXEC pipeline, shared by every replica.
"""

import asyncio
import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

import redis.asyncio as redis

from receiver.config.settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one rate-limit check."""

    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # epoch seconds when the oldest in-window request expires
    retry_after: int | None = None

    def headers(self) -> dict[str, str]:
        """``X-RateLimit-*`` headers, plus ``Retry-After`` when denied."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def _decide(count: int, oldest: float, now: float, limit: int, window: int) -> RateLimitDecision:
    """Turn an in-window count and its oldest timestamp into a decision."""
    expires_at = oldest + window
    reset_at = math.ceil(expires_at)
    if count > limit:
        retry_after = min(window, max(1, math.ceil(expires_at - now)))
        return RateLimitDecision(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_at=reset_at,
            retry_after=retry_after,
        )
    return RateLimitDecision(
        allowed=True,
        limit=limit,
        remaining=limit - count,
        reset_at=reset_at,
    )


class RateLimiter(ABC):
    """Interface shared by all rate-limit backends."""

    def __init__(self, limit: int, window_seconds: int):
        self.limit = limit
        self.window_seconds = window_seconds

    @abstractmethod
    async def check(self, identifier: str) -> RateLimitDecision:
        """Record a request from ``identifier`` and decide whether to allow it."""

    async def start(self) -> None:
        """Start any background maintenance."""

    async def close(self) -> None:
        """Stop background maintenance and release resources."""

    async def health_check(self) -> bool:
        return True


class InMemoryRateLimiter(RateLimiter):
    """Process-local sliding window.

    The lock covers prune, append and count as one step and is never held
    across I/O.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        sweep_interval_seconds: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(limit, window_seconds)
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: asyncio.Task | None = None

    @property
    def tracked_identifiers(self) -> int:
        return len(self._windows)

    def _prune(self, window: deque[float], now: float) -> None:
        cutoff = now - self.window_seconds
        while window and window[0] < cutoff:
            window.popleft()

    async def check(self, identifier: str) -> RateLimitDecision:
        async with self._lock:
            now = self._clock()
            window = self._windows.setdefault(identifier, deque())
            self._prune(window, now)
            window.append(now)
            return _decide(len(window), window[0], now, self.limit, self.window_seconds)

    async def sweep(self) -> int:
        """Evict identifiers with no requests left in the window.

        Returns the number of identifiers evicted.
        """
        async with self._lock:
            now = self._clock()
            idle = []
            for identifier, window in self._windows.items():
                self._prune(window, now)
                if not window:
                    idle.append(identifier)
            for identifier in idle:
                del self._windows[identifier]
        if idle:
            logger.debug("Rate limiter evicted %d idle identifiers", len(idle))
        return len(idle)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Rate limiter sweep failed: {e}")

    async def start(self) -> None:
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None


class RedisRateLimiter(RateLimiter):
    """Sliding window shared across instances via Redis sorted sets."""

    def __init__(
        self,
        client: redis.Redis,
        limit: int,
        window_seconds: int,
        key_prefix: str = "rl:data",
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(limit, window_seconds)
        self._redis = client
        self._key_prefix = key_prefix
        self._clock = clock

    def _key(self, identifier: str) -> str:
        return f"{self._key_prefix}:{identifier}"

    async def check(self, identifier: str) -> RateLimitDecision:
        key = self._key(identifier)
        now = self._clock()
        member = f"{now:.6f}:{uuid.uuid4().hex[:8]}"

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, "-inf", f"({now - self.window_seconds}")
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, self.window_seconds)
            _, _, count, oldest_entries, _ = await pipe.execute()

        oldest = oldest_entries[0][1] if oldest_entries else now
        return _decide(int(count), float(oldest), now, self.limit, self.window_seconds)

    async def close(self) -> None:
        await self._redis.aclose()

    async def health_check(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False


def create_rate_limiter(settings: Settings) -> RateLimiter:
    """Build the backend selected by ``RATE_LIMIT_BACKEND``."""
    if settings.rate_limit_backend == "redis":
        client = redis.from_url(
            str(settings.redis_url),
            encoding="utf-8",
            decode_responses=True,
        )
        return RedisRateLimiter(
            client,
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return InMemoryRateLimiter(
        limit=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
    )
