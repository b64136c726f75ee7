from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.asyncio import from_url as redis_from_url
from redis.exceptions import RedisError

from .config import settings

logger = logging.getLogger(__name__)

_redis: Redis | None = None


def is_redis_configured() -> bool:
    return bool(settings.redis_url)


def is_redis_connected() -> bool:
    return _redis is not None


def get_redis() -> Redis | None:
    return _redis


async def init_redis() -> bool:
    global _redis
    if _redis is not None:
        return True

    if not settings.redis_url:
        logger.info("Redis URL is not configured, shared rate limiting disabled")
        return False

    client = redis_from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )
    try:
        await client.ping()
    except (RedisError, OSError):
        logger.warning("Failed to connect to Redis, falling back to in-process rate limiting", exc_info=True)
        await client.aclose()
        return False

    _redis = client
    logger.info("Redis connected")
    return True


async def close_redis() -> None:
    global _redis
    if _redis is None:
        return
    try:
        await _redis.aclose()
    finally:
        _redis = None


async def ping_redis() -> bool:
    if _redis is None:
        return False
    try:
        await _redis.ping()
        return True
    except (RedisError, OSError):
        logger.exception("Redis ping failed")
        return False


def rate_limit_key(client_key: str) -> str:
    return f"humbug:ratelimit:{client_key}"


async def incr_window_counter(client: Redis, key: str, window_seconds: int) -> tuple[int, int]:
    """Count one hit in the fixed window stored at `key`.

    Returns the hit count and the seconds left in the window. The window
    starts on the first hit; a key left without a TTL gets one here.
    """
    async with client.pipeline(transaction=True) as pipe:
        pipe.incr(key)
        pipe.ttl(key)
        count, ttl = await pipe.execute()
    if ttl is None or ttl < 0:
        await client.expire(key, window_seconds)
        ttl = window_seconds
    return int(count), int(ttl)
