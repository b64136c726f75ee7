from __future__ import annotations

import logging

import asyncpg
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from humbug.api.router import api_router
from humbug.config import settings
from humbug.database import create_postgres_store
from humbug.question_catalog import build_memory_store
from humbug.rate_limit import MemoryRateLimiter, RedisRateLimiter
from humbug.redis_cache import close_redis, get_redis, init_redis
from humbug.runtime import HumbugRuntime
from humbug.store import RoomStore

logger = logging.getLogger(__name__)


async def _open_store() -> RoomStore | None:
    if settings.room_store == "memory":
        return build_memory_store(settings.question_catalog_path)
    try:
        return await create_postgres_store()
    except (OSError, asyncpg.PostgresError, asyncpg.exceptions.InterfaceError):
        logger.exception("PostgreSQL is unavailable, room actions will answer 503")
        return None


def create_app(store: RoomStore | None = None, rate_limiter: object | None = None) -> FastAPI:
    app = FastAPI(title="HUMBUG Rooms", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    local_limiter = MemoryRateLimiter(
        limit=settings.rate_limit_max,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.state.runtime = HumbugRuntime(store) if store is not None else None
    app.state.rate_limiter = rate_limiter or local_limiter

    @app.on_event("startup")
    async def on_startup() -> None:
        if app.state.runtime is None:
            opened = await _open_store()
            app.state.runtime = HumbugRuntime(opened) if opened is not None else None
        if rate_limiter is None and await init_redis():
            app.state.rate_limiter = RedisRateLimiter(
                get_redis(),
                limit=settings.rate_limit_max,
                window_seconds=settings.rate_limit_window_seconds,
                fallback=local_limiter,
            )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        if app.state.runtime is not None:
            await app.state.runtime.store.close()
        await close_redis()

    return app
