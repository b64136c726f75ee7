from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator

import asyncpg

from . import database_game, database_rooms
from .config import settings
from .models import schema_statements
from .runtime_types import (
    GameSessionRecord,
    PlayerAnswerRecord,
    PlayerRecord,
    QuestionRecord,
    QuestionSetRecord,
    RoomRecord,
)
from .store import RoomStore, RoomStoreTransaction

logger = logging.getLogger(__name__)

_pool: asyncpg.Pool | None = None


def _normalized_database_url() -> str:
    url = settings.database_url.strip()
    if url.startswith("postgresql+asyncpg://"):
        return "postgresql://" + url[len("postgresql+asyncpg://") :]
    return url


async def _get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(dsn=_normalized_database_url(), min_size=1, max_size=10)
    return _pool


async def get_db_pool() -> asyncpg.Pool:
    return await _get_pool()


async def init_db() -> None:
    pool = await _get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            for statement in schema_statements():
                await conn.execute(statement)
    logger.info("Database schema is ready")


async def close_db() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def ping_db() -> bool:
    try:
        pool = await _get_pool()
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return True
    except Exception:  # pragma: no cover
        logger.exception("Database ping failed")
        return False


class PostgresTransaction(RoomStoreTransaction):
    def __init__(self, conn: asyncpg.Connection, *, for_update: bool) -> None:
        self._conn = conn
        self._for_update = for_update

    async def lock_room(self, room_id: str) -> RoomRecord | None:
        return await database_rooms.fetch_room(self._conn, room_id, for_update=self._for_update)

    async def get_room_by_code(
        self, code: str, *, now: datetime, include_expired: bool = False
    ) -> RoomRecord | None:
        return await database_rooms.fetch_room_by_code(
            self._conn, code, now=now, include_expired=include_expired
        )

    async def claim_room_code(self, code: str, *, now: datetime) -> bool:
        return await database_rooms.claim_room_code(self._conn, code, now=now)

    async def insert_room(self, **fields: Any) -> RoomRecord:
        return await database_rooms.insert_room(self._conn, **fields)

    async def save_room(self, room: RoomRecord) -> None:
        await database_rooms.update_room(self._conn, room)

    async def delete_room(self, room_id: str) -> None:
        await database_rooms.delete_room(self._conn, room_id)

    async def list_players(self, room_id: str) -> list[PlayerRecord]:
        return await database_rooms.fetch_players(self._conn, room_id)

    async def insert_player(self, **fields: Any) -> PlayerRecord:
        return await database_rooms.insert_player(self._conn, **fields)

    async def save_player(self, player: PlayerRecord) -> None:
        await database_rooms.update_player(self._conn, player)

    async def delete_player(self, player_id: int) -> None:
        await database_rooms.delete_player(self._conn, player_id)

    async def get_game(self, room_id: str) -> GameSessionRecord | None:
        return await database_game.fetch_game(self._conn, room_id)

    async def insert_game(self, **fields: Any) -> GameSessionRecord:
        return await database_game.insert_game(self._conn, **fields)

    async def save_game(self, game: GameSessionRecord) -> None:
        await database_game.update_game(self._conn, game)

    async def insert_answer(self, **fields: Any) -> PlayerAnswerRecord:
        return await database_game.insert_answer(self._conn, **fields)

    async def get_answer(self, room_id: str, answer_id: int) -> PlayerAnswerRecord | None:
        return await database_game.fetch_answer(self._conn, room_id, answer_id)

    async def save_answer(self, answer: PlayerAnswerRecord) -> None:
        await database_game.update_answer(self._conn, answer)

    async def list_answers(
        self,
        session_id: int,
        *,
        question_id: int | None = None,
        limit: int | None = None,
    ) -> list[PlayerAnswerRecord]:
        return await database_game.fetch_answers(self._conn, session_id, question_id=question_id, limit=limit)

    async def get_question(self, question_id: int) -> QuestionRecord | None:
        return await database_game.fetch_question(self._conn, question_id)

    async def get_question_set(self, set_id: int) -> QuestionSetRecord | None:
        return await database_game.fetch_question_set(self._conn, set_id)

    async def list_question_sets(self) -> list[QuestionSetRecord]:
        return await database_game.fetch_question_sets(self._conn)

    async def pick_question_ids(self, set_id: int, count: int) -> list[int]:
        return await database_game.pick_question_ids(self._conn, set_id, count)


class PostgresRoomStore(RoomStore):
    """Room store backed by PostgreSQL.

    Room serialization comes from `SELECT ... FOR UPDATE` on the room row,
    taken by `lock_room` inside the transaction.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def transaction(self, room_id: str | None = None) -> AsyncIterator[RoomStoreTransaction]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                yield PostgresTransaction(conn, for_update=True)

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[RoomStoreTransaction]:
        async with self._pool.acquire() as conn:
            async with conn.transaction(isolation="repeatable_read", readonly=True):
                yield PostgresTransaction(conn, for_update=False)

    async def purge_expired_rooms(self, now: datetime) -> int:
        async with self._pool.acquire() as conn:
            removed = await database_rooms.delete_expired_rooms(conn, now)
        if removed:
            logger.info("Purged %s expired rooms", removed)
        return removed

    async def count_active_rooms(self, now: datetime) -> int:
        async with self._pool.acquire() as conn:
            return await database_rooms.count_active_rooms(conn, now)

    async def ping(self) -> bool:
        return await ping_db()

    async def close(self) -> None:
        await close_db()


async def create_postgres_store() -> PostgresRoomStore:
    await init_db()
    return PostgresRoomStore(await _get_pool())
