from __future__ import annotations

from fastapi import APIRouter, Request

from humbug.redis_cache import is_redis_configured, ping_redis

router = APIRouter(tags=["system"])


@router.get("/api/health")
async def health(request: Request) -> dict[str, object]:
    runtime = request.app.state.runtime
    store_ok = await runtime.store.ping() if runtime is not None else False
    redis_ok = await ping_redis() if is_redis_configured() else False
    redis_status = "disabled" if not is_redis_configured() else ("up" if redis_ok else "down")
    stats = await runtime.get_stats() if store_ok else None
    return {
        "ok": store_ok,
        "database": "up" if store_ok else "down",
        "redis": redis_status,
        "rateLimiter": type(request.app.state.rate_limiter).__name__,
        "activeRooms": stats["activeRooms"] if stats else None,
        "store": stats["store"] if stats else None,
    }
