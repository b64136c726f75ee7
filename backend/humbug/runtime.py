from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable

from .config import GameRules, settings
from .errors import NotFound, ValidationFailed
from .runtime_answer_flow import challenge_answer as challenge_room_answer
from .runtime_answer_flow import submit_answer as submit_room_answer
from .runtime_lifecycle import create_room as create_game_room
from .runtime_lifecycle import join_room as join_game_room
from .runtime_lifecycle import leave_room as leave_game_room
from .runtime_state_sync import (
    StateResult,
    build_state_payload,
    version_tag,
    version_tag_matches,
)
from .runtime_turn_flow import advance_turn as advance_room_turn
from .runtime_turn_flow import start_game as start_room_game
from .runtime_types import RoomRecord
from .runtime_utils import random_room_code, sanitize_room_code, utc_now
from .store import RoomStore, RoomStoreTransaction

logger = logging.getLogger(__name__)


class HumbugRuntime:
    """Room, turn and challenge engine over a RoomStore.

    Stateless between calls: every action opens its own store transaction,
    so any number of processes can serve the same rooms.
    """

    def __init__(
        self,
        store: RoomStore,
        rules: GameRules | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        code_factory: Callable[[], str] = random_room_code,
    ) -> None:
        self.store = store
        self.rules = rules or settings.rules
        self._clock = clock
        self.code_factory = code_factory

    def now(self) -> datetime:
        return self._clock()

    def _log_event(self, event: str, level: int = logging.INFO, **fields: object) -> None:
        logger.log(
            level,
            "rooms.%s %s",
            event,
            json.dumps(fields, ensure_ascii=False, separators=(",", ":"), default=str),
        )

    @staticmethod
    def _bump(room: RoomRecord, now: datetime) -> None:
        room.state_version += 1
        room.last_activity = now

    async def _require_room(self, tx: RoomStoreTransaction, room_id: str, now: datetime) -> RoomRecord:
        room = await tx.lock_room(room_id)
        if room is None or room.is_expired(now):
            raise NotFound("Room not found")
        return room

    async def create_room(
        self,
        session_id: str,
        *,
        max_players: int,
        question_set_id: int | None = None,
    ) -> dict[str, Any]:
        return await create_game_room(self, session_id, max_players=max_players, question_set_id=question_set_id)

    async def join_room(self, session_id: str, *, code: str, nickname: str) -> dict[str, Any]:
        return await join_game_room(self, session_id, code=code, nickname=nickname)

    async def leave_room(self, session_id: str, *, room_id: str) -> dict[str, Any]:
        return await leave_game_room(self, session_id, room_id=room_id)

    async def start_game(
        self,
        session_id: str,
        *,
        room_id: str,
        question_set_id: int | None = None,
    ) -> dict[str, Any]:
        return await start_room_game(self, session_id, room_id=room_id, question_set_id=question_set_id)

    async def advance(self, session_id: str, *, room_id: str) -> dict[str, Any]:
        return await advance_room_turn(self, session_id, room_id=room_id)

    async def submit_answer(self, session_id: str, *, room_id: str, answer: str) -> dict[str, Any]:
        return await submit_room_answer(self, session_id, room_id=room_id, answer=answer)

    async def challenge(self, session_id: str, *, room_id: str, answer_id: int) -> dict[str, Any]:
        return await challenge_room_answer(self, session_id, room_id=room_id, answer_id=answer_id)

    async def get_state(
        self,
        session_id: str | None,
        *,
        room_id: str | None = None,
        code: str | None = None,
        if_none_match: str | None = None,
    ) -> StateResult:
        if not room_id and not code:
            raise ValidationFailed("roomId or code is required")

        now = self.now()
        async with self.store.snapshot() as tx:
            if room_id:
                room = await tx.lock_room(room_id)
            else:
                room = await tx.get_room_by_code(sanitize_room_code(code), now=now)
            if room is None or room.is_expired(now):
                raise NotFound("Room not found")

            tag = version_tag(room)
            if version_tag_matches(if_none_match, tag):
                return StateResult(etag=tag, unchanged=True)

            players = await tx.list_players(room.id)
            game = await tx.get_game(room.id)
            question = None
            recent_answers = []
            current_answer = None
            if game is not None:
                question = await tx.get_question(game.current_question_id)
                recent_answers = await tx.list_answers(game.id, limit=self.rules.recent_answers_limit)
                current_answer = next(
                    (answer for answer in recent_answers if answer.question_id == game.current_question_id),
                    None,
                )

        payload = build_state_payload(
            room=room,
            players=players,
            session_id=session_id,
            game=game,
            question=question,
            recent_answers=recent_answers,
            current_answer=current_answer,
            now=now,
        )
        return StateResult(etag=tag, unchanged=False, payload=payload)

    async def available_sets(self) -> list[dict[str, Any]]:
        async with self.store.snapshot() as tx:
            sets = await tx.list_question_sets()
        return [
            {
                "id": item.id,
                "slug": item.slug,
                "nameEn": item.name_en,
                "nameHu": item.name_hu,
                "displayOrder": item.display_order,
                "questionCount": item.question_count,
                "playable": item.question_count >= self.rules.questions_per_game,
            }
            for item in sets
        ]

    async def purge_expired_rooms(self) -> int:
        removed = await self.store.purge_expired_rooms(self.now())
        if removed:
            self._log_event("purged", removed=removed)
        return removed

    async def get_stats(self) -> dict[str, Any]:
        return {
            "generatedAt": self.now().isoformat(),
            "activeRooms": await self.store.count_active_rooms(self.now()),
            "store": self.store.describe(),
        }
