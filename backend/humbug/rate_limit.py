from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .redis_cache import incr_window_counter, rate_limit_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }


class MemoryRateLimiter:
    """Fixed-window counter per client key, local to this process."""

    def __init__(
        self,
        *,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, tuple[float, int]] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str) -> RateLimitDecision:
        async with self._lock:
            now = self._clock()
            reset_at, count = self._windows.get(key, (0.0, 0))
            if now >= reset_at:
                reset_at, count = now + self.window_seconds, 0
                self._sweep(now)
            count += 1
            self._windows[key] = (reset_at, count)
        return RateLimitDecision(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_after=max(0.0, reset_at - now),
        )

    def _sweep(self, now: float) -> None:
        stale = [key for key, (reset_at, _) in self._windows.items() if reset_at <= now]
        for key in stale:
            del self._windows[key]


class RedisRateLimiter:
    """Fixed window shared by every process that talks to the same Redis.

    Redis errors fall through to the local limiter so a cache outage never
    blocks room actions.
    """

    def __init__(self, client: Redis, *, limit: int, window_seconds: int, fallback: MemoryRateLimiter) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._client = client
        self._fallback = fallback

    async def hit(self, key: str) -> RateLimitDecision:
        try:
            count, ttl = await incr_window_counter(self._client, rate_limit_key(key), self.window_seconds)
        except (RedisError, OSError):
            logger.warning("Redis rate limit check failed, using local window", exc_info=True)
            return await self._fallback.hit(key)

        return RateLimitDecision(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_after=float(ttl if ttl > 0 else self.window_seconds),
        )
