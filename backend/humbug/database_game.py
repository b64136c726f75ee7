from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any

import asyncpg

from .database_rooms import as_room_uuid
from .runtime_types import GameSessionRecord, PlayerAnswerRecord, QuestionRecord, QuestionSetRecord

logger = logging.getLogger(__name__)


def _load_event(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        logger.warning("Discarding malformed last_challenge_event payload")
        return None
    return payload if isinstance(payload, dict) else None


def _game_from_row(row: asyncpg.Record) -> GameSessionRecord:
    return GameSessionRecord(
        id=int(row["id"]),
        room_id=str(row["room_id"]),
        question_ids=[int(item) for item in row["question_ids"] or []],
        turn_order=[int(item) for item in row["turn_order"] or []],
        total_questions=int(row["total_questions"]),
        current_question_index=int(row["current_question_index"]),
        current_question_id=int(row["current_question_id"]),
        current_turn_player_id=row["current_turn_player_id"],
        round_number=int(row["round_number"]),
        started_at=row["started_at"],
        last_updated=row["last_updated"],
        last_answer_at=row["last_answer_at"],
        challenge_deadline=row["challenge_deadline"],
        last_challenge_event=_load_event(row["last_challenge_event"]),
    )


def _answer_from_row(row: asyncpg.Record) -> PlayerAnswerRecord:
    return PlayerAnswerRecord(
        id=int(row["id"]),
        session_id=int(row["session_id"]),
        player_id=row["player_id"],
        question_id=int(row["question_id"]),
        answer_text=row["answer_text"],
        is_correct=bool(row["is_correct"]),
        points_earned=int(row["points_earned"]),
        round_number=int(row["round_number"]),
        submitted_at=row["submitted_at"],
        revealed=bool(row["revealed"]),
        challenged_by=row["challenged_by"],
    )


def _question_set_from_row(row: asyncpg.Record) -> QuestionSetRecord:
    return QuestionSetRecord(
        id=int(row["id"]),
        slug=row["slug"],
        name_en=row["name_en"],
        name_hu=row["name_hu"],
        display_order=int(row["display_order"]),
        is_active=bool(row["is_active"]),
        question_count=int(row["question_count"] or 0),
    )


async def fetch_game(conn: asyncpg.Connection, room_id: str) -> GameSessionRecord | None:
    room_uuid = as_room_uuid(room_id)
    if room_uuid is None:
        return None
    row = await conn.fetchrow("SELECT * FROM multiplayer_sessions WHERE room_id = $1", room_uuid)
    return _game_from_row(row) if row else None


async def insert_game(
    conn: asyncpg.Connection,
    *,
    room_id: str,
    question_ids: list[int],
    turn_order: list[int],
    now: datetime,
) -> GameSessionRecord:
    row = await conn.fetchrow(
        """
        INSERT INTO multiplayer_sessions (
          room_id, question_ids, turn_order, total_questions, current_question_index,
          current_question_id, current_turn_player_id, round_number, started_at, last_updated
        )
        VALUES ($1, $2::int[], $3::bigint[], $4, 0, $5, $6, 1, $7, $7)
        RETURNING *
        """,
        uuid.UUID(room_id),
        list(question_ids),
        list(turn_order),
        len(question_ids),
        question_ids[0],
        turn_order[0] if turn_order else None,
        now,
    )
    return _game_from_row(row)


async def update_game(conn: asyncpg.Connection, game: GameSessionRecord) -> None:
    event = (
        json.dumps(game.last_challenge_event, ensure_ascii=False)
        if game.last_challenge_event is not None
        else None
    )
    await conn.execute(
        """
        UPDATE multiplayer_sessions
        SET current_question_index = $2,
            current_question_id = $3,
            current_turn_player_id = $4,
            round_number = $5,
            last_updated = $6,
            last_answer_at = $7,
            challenge_deadline = $8,
            last_challenge_event = $9
        WHERE id = $1
        """,
        game.id,
        game.current_question_index,
        game.current_question_id,
        game.current_turn_player_id,
        game.round_number,
        game.last_updated,
        game.last_answer_at,
        game.challenge_deadline,
        event,
    )


async def insert_answer(
    conn: asyncpg.Connection,
    *,
    session_id: int,
    player_id: int,
    question_id: int,
    answer_text: str,
    is_correct: bool,
    points_earned: int,
    round_number: int,
    now: datetime,
) -> PlayerAnswerRecord:
    row = await conn.fetchrow(
        """
        INSERT INTO player_answers (
          session_id, player_id, question_id, answer_text, is_correct,
          points_earned, round_number, revealed, submitted_at
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, FALSE, $8)
        RETURNING *
        """,
        session_id,
        player_id,
        question_id,
        answer_text,
        is_correct,
        points_earned,
        round_number,
        now,
    )
    return _answer_from_row(row)


async def fetch_answer(conn: asyncpg.Connection, room_id: str, answer_id: int) -> PlayerAnswerRecord | None:
    room_uuid = as_room_uuid(room_id)
    if room_uuid is None:
        return None
    row = await conn.fetchrow(
        """
        SELECT pa.*
        FROM player_answers pa
        JOIN multiplayer_sessions ms ON ms.id = pa.session_id
        WHERE pa.id = $1 AND ms.room_id = $2
        """,
        int(answer_id),
        room_uuid,
    )
    return _answer_from_row(row) if row else None


async def update_answer(conn: asyncpg.Connection, answer: PlayerAnswerRecord) -> None:
    await conn.execute(
        "UPDATE player_answers SET revealed = $2, challenged_by = $3 WHERE id = $1",
        answer.id,
        answer.revealed,
        answer.challenged_by,
    )


async def fetch_answers(
    conn: asyncpg.Connection,
    session_id: int,
    *,
    question_id: int | None = None,
    limit: int | None = None,
) -> list[PlayerAnswerRecord]:
    query = "SELECT * FROM player_answers WHERE session_id = $1"
    args: list[Any] = [session_id]
    if question_id is not None:
        args.append(question_id)
        query += f" AND question_id = ${len(args)}"
    query += " ORDER BY submitted_at DESC, id DESC"
    if limit is not None:
        args.append(int(limit))
        query += f" LIMIT ${len(args)}"
    rows = await conn.fetch(query, *args)
    return [_answer_from_row(row) for row in rows]


async def fetch_question(conn: asyncpg.Connection, question_id: int) -> QuestionRecord | None:
    row = await conn.fetchrow(
        """
        SELECT q.id, q.set_id, q.question_en, q.question_hu, q.category,
               COALESCE(array_agg(a.answer_en) FILTER (WHERE a.answer_en IS NOT NULL), '{}') AS answers_en,
               COALESCE(array_agg(a.answer_hu) FILTER (WHERE a.answer_hu IS NOT NULL), '{}') AS answers_hu
        FROM questions q
        LEFT JOIN answers a ON a.question_id = q.id
        WHERE q.id = $1
        GROUP BY q.id
        """,
        int(question_id),
    )
    if row is None:
        return None
    accepted = [str(item) for item in list(row["answers_en"]) + list(row["answers_hu"]) if str(item).strip()]
    return QuestionRecord(
        id=int(row["id"]),
        set_id=int(row["set_id"]),
        text_en=row["question_en"],
        text_hu=row["question_hu"],
        category=row["category"],
        accepted_answers=list(dict.fromkeys(accepted)),
    )


_QUESTION_SET_SELECT = """
    SELECT qs.id, qs.slug, qs.name_en, qs.name_hu, qs.display_order, qs.is_active,
           (SELECT COUNT(*) FROM questions q WHERE q.set_id = qs.id AND q.is_active) AS question_count
    FROM question_sets qs
"""


async def fetch_question_set(conn: asyncpg.Connection, set_id: int) -> QuestionSetRecord | None:
    row = await conn.fetchrow(_QUESTION_SET_SELECT + " WHERE qs.id = $1", int(set_id))
    return _question_set_from_row(row) if row else None


async def fetch_question_sets(conn: asyncpg.Connection) -> list[QuestionSetRecord]:
    rows = await conn.fetch(_QUESTION_SET_SELECT + " WHERE qs.is_active ORDER BY qs.display_order, qs.id")
    return [_question_set_from_row(row) for row in rows]


async def pick_question_ids(conn: asyncpg.Connection, set_id: int, count: int) -> list[int]:
    rows = await conn.fetch(
        "SELECT id FROM questions WHERE set_id = $1 AND is_active ORDER BY RANDOM() LIMIT $2",
        int(set_id),
        int(count),
    )
    return [int(row["id"]) for row in rows]
