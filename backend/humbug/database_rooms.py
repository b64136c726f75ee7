from __future__ import annotations

import uuid
from datetime import datetime

import asyncpg

from .runtime_types import PlayerRecord, RoomRecord


def as_room_uuid(room_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(room_id))
    except (TypeError, ValueError):
        return None


def _room_from_row(row: asyncpg.Record) -> RoomRecord:
    return RoomRecord(
        id=str(row["id"]),
        code=row["code"],
        host_session_id=row["host_session_id"],
        max_players=int(row["max_players"]),
        question_set_id=row["question_set_id"],
        state=row["state"],
        state_version=int(row["state_version"]),
        last_activity=row["last_activity"],
        created_at=row["created_at"],
        expires_at=row["expires_at"],
    )


def _player_from_row(row: asyncpg.Record) -> PlayerRecord:
    return PlayerRecord(
        id=int(row["id"]),
        room_id=str(row["room_id"]),
        session_id=row["session_id"],
        nickname=row["nickname"],
        lives=int(row["lives"]),
        score=int(row["score"]),
        is_host=bool(row["is_host"]),
        joined_at=row["joined_at"],
        last_seen=row["last_seen"],
    )


async def fetch_room(conn: asyncpg.Connection, room_id: str, *, for_update: bool) -> RoomRecord | None:
    room_uuid = as_room_uuid(room_id)
    if room_uuid is None:
        return None
    query = "SELECT * FROM game_rooms WHERE id = $1"
    if for_update:
        query += " FOR UPDATE"
    row = await conn.fetchrow(query, room_uuid)
    return _room_from_row(row) if row else None


async def fetch_room_by_code(
    conn: asyncpg.Connection,
    code: str,
    *,
    now: datetime,
    include_expired: bool = False,
) -> RoomRecord | None:
    if include_expired:
        row = await conn.fetchrow(
            "SELECT * FROM game_rooms WHERE code = $1 ORDER BY created_at DESC LIMIT 1",
            code,
        )
    else:
        row = await conn.fetchrow(
            """
            SELECT * FROM game_rooms
            WHERE code = $1 AND expires_at > $2
            ORDER BY created_at DESC
            LIMIT 1
            """,
            code,
            now,
        )
    return _room_from_row(row) if row else None


async def claim_room_code(conn: asyncpg.Connection, code: str, *, now: datetime) -> bool:
    # Held until commit, so two creators cannot both see the code as free.
    await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", code)
    return await fetch_room_by_code(conn, code, now=now) is None


async def insert_room(
    conn: asyncpg.Connection,
    *,
    room_id: str,
    code: str,
    host_session_id: str,
    max_players: int,
    question_set_id: int | None,
    now: datetime,
    expires_at: datetime,
) -> RoomRecord:
    row = await conn.fetchrow(
        """
        INSERT INTO game_rooms (
          id, code, host_session_id, max_players, question_set_id,
          state, state_version, last_activity, created_at, expires_at
        )
        VALUES ($1, $2, $3, $4, $5, 'lobby', 0, $6, $6, $7)
        RETURNING *
        """,
        uuid.UUID(room_id),
        code,
        host_session_id,
        int(max_players),
        question_set_id,
        now,
        expires_at,
    )
    return _room_from_row(row)


async def update_room(conn: asyncpg.Connection, room: RoomRecord) -> None:
    await conn.execute(
        """
        UPDATE game_rooms
        SET host_session_id = $2,
            max_players = $3,
            question_set_id = $4,
            state = $5,
            state_version = $6,
            last_activity = $7,
            expires_at = $8
        WHERE id = $1
        """,
        uuid.UUID(room.id),
        room.host_session_id,
        room.max_players,
        room.question_set_id,
        room.state,
        room.state_version,
        room.last_activity,
        room.expires_at,
    )


async def delete_room(conn: asyncpg.Connection, room_id: str) -> None:
    room_uuid = as_room_uuid(room_id)
    if room_uuid is not None:
        await conn.execute("DELETE FROM game_rooms WHERE id = $1", room_uuid)


async def delete_expired_rooms(conn: asyncpg.Connection, now: datetime) -> int:
    status = await conn.execute("DELETE FROM game_rooms WHERE expires_at <= $1", now)
    # asyncpg returns the command tag, e.g. "DELETE 3".
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0


async def count_active_rooms(conn: asyncpg.Connection, now: datetime) -> int:
    value = await conn.fetchval("SELECT COUNT(*) FROM game_rooms WHERE expires_at > $1", now)
    return int(value or 0)


async def fetch_players(conn: asyncpg.Connection, room_id: str) -> list[PlayerRecord]:
    room_uuid = as_room_uuid(room_id)
    if room_uuid is None:
        return []
    rows = await conn.fetch(
        "SELECT * FROM room_players WHERE room_id = $1 ORDER BY joined_at, id",
        room_uuid,
    )
    return [_player_from_row(row) for row in rows]


async def insert_player(
    conn: asyncpg.Connection,
    *,
    room_id: str,
    session_id: str,
    nickname: str,
    is_host: bool,
    lives: int,
    now: datetime,
) -> PlayerRecord:
    row = await conn.fetchrow(
        """
        INSERT INTO room_players (room_id, session_id, nickname, lives, score, is_host, joined_at, last_seen)
        VALUES ($1, $2, $3, $4, 0, $5, $6, $6)
        RETURNING *
        """,
        uuid.UUID(room_id),
        session_id,
        nickname,
        int(lives),
        bool(is_host),
        now,
    )
    return _player_from_row(row)


async def update_player(conn: asyncpg.Connection, player: PlayerRecord) -> None:
    await conn.execute(
        """
        UPDATE room_players
        SET nickname = $2, lives = $3, score = $4, is_host = $5, last_seen = $6
        WHERE id = $1
        """,
        player.id,
        player.nickname,
        player.lives,
        player.score,
        player.is_host,
        player.last_seen,
    )


async def delete_player(conn: asyncpg.Connection, player_id: int) -> None:
    await conn.execute("DELETE FROM room_players WHERE id = $1", int(player_id))
