from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import random
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Iterable

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


@dataclass
class _RoomBucket:
    room: RoomRecord
    players: dict[int, PlayerRecord] = field(default_factory=dict)
    game: GameSessionRecord | None = None
    answers: dict[int, PlayerAnswerRecord] = field(default_factory=dict)


class _MemoryTransaction(RoomStoreTransaction):
    def __init__(self, store: "MemoryRoomStore") -> None:
        self._store = store
        self.created_rooms: list[str] = []

    def _bucket(self, room_id: str) -> _RoomBucket | None:
        return self._store._buckets.get(room_id)

    async def lock_room(self, room_id: str) -> RoomRecord | None:
        bucket = self._bucket(room_id)
        return copy.copy(bucket.room) if bucket else None

    async def get_room_by_code(
        self, code: str, *, now: datetime, include_expired: bool = False
    ) -> RoomRecord | None:
        matches = [
            bucket.room
            for bucket in self._store._buckets.values()
            if bucket.room.code == code and (include_expired or not bucket.room.is_expired(now))
        ]
        if not matches:
            return None
        matches.sort(key=lambda room: room.created_at, reverse=True)
        return copy.copy(matches[0])

    async def claim_room_code(self, code: str, *, now: datetime) -> bool:
        return await self.get_room_by_code(code, now=now) is None

    async def insert_room(
        self,
        *,
        room_id: str,
        code: str,
        host_session_id: str,
        max_players: int,
        question_set_id: int | None,
        now: datetime,
        expires_at: datetime,
    ) -> RoomRecord:
        room = RoomRecord(
            id=room_id,
            code=code,
            host_session_id=host_session_id,
            max_players=max_players,
            question_set_id=question_set_id,
            state="lobby",
            state_version=0,
            last_activity=now,
            created_at=now,
            expires_at=expires_at,
        )
        self._store._buckets[room_id] = _RoomBucket(room=copy.copy(room))
        self.created_rooms.append(room_id)
        return room

    async def save_room(self, room: RoomRecord) -> None:
        bucket = self._bucket(room.id)
        if bucket is not None:
            bucket.room = copy.copy(room)

    async def delete_room(self, room_id: str) -> None:
        self._store._buckets.pop(room_id, None)

    async def list_players(self, room_id: str) -> list[PlayerRecord]:
        bucket = self._bucket(room_id)
        if bucket is None:
            return []
        players = [copy.copy(player) for player in bucket.players.values()]
        players.sort(key=lambda player: (player.joined_at, player.id))
        return players

    async def insert_player(
        self,
        *,
        room_id: str,
        session_id: str,
        nickname: str,
        is_host: bool,
        lives: int,
        now: datetime,
    ) -> PlayerRecord:
        bucket = self._bucket(room_id)
        if bucket is None:
            raise LookupError(f"room {room_id} does not exist")
        if any(player.session_id == session_id for player in bucket.players.values()):
            raise ValueError("player already exists for this session")
        player = PlayerRecord(
            id=next(self._store._player_ids),
            room_id=room_id,
            session_id=session_id,
            nickname=nickname,
            lives=lives,
            score=0,
            is_host=is_host,
            joined_at=now,
            last_seen=now,
        )
        bucket.players[player.id] = copy.copy(player)
        return player

    async def save_player(self, player: PlayerRecord) -> None:
        bucket = self._bucket(player.room_id)
        if bucket is not None and player.id in bucket.players:
            bucket.players[player.id] = copy.copy(player)

    async def delete_player(self, player_id: int) -> None:
        for bucket in self._store._buckets.values():
            if bucket.players.pop(player_id, None) is not None:
                return

    async def get_game(self, room_id: str) -> GameSessionRecord | None:
        bucket = self._bucket(room_id)
        if bucket is None or bucket.game is None:
            return None
        return copy.deepcopy(bucket.game)

    async def insert_game(
        self,
        *,
        room_id: str,
        question_ids: list[int],
        turn_order: list[int],
        now: datetime,
    ) -> GameSessionRecord:
        bucket = self._bucket(room_id)
        if bucket is None:
            raise LookupError(f"room {room_id} does not exist")
        if bucket.game is not None:
            raise ValueError("room already has a game session")
        game = GameSessionRecord(
            id=next(self._store._game_ids),
            room_id=room_id,
            question_ids=list(question_ids),
            turn_order=list(turn_order),
            total_questions=len(question_ids),
            current_question_index=0,
            current_question_id=question_ids[0],
            current_turn_player_id=turn_order[0] if turn_order else None,
            round_number=1,
            started_at=now,
            last_updated=now,
        )
        bucket.game = copy.deepcopy(game)
        return game

    async def save_game(self, game: GameSessionRecord) -> None:
        bucket = self._bucket(game.room_id)
        if bucket is not None:
            bucket.game = copy.deepcopy(game)

    def _bucket_for_session(self, session_id: int) -> _RoomBucket | None:
        for bucket in self._store._buckets.values():
            if bucket.game is not None and bucket.game.id == session_id:
                return bucket
        return None

    async def insert_answer(
        self,
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
        bucket = self._bucket_for_session(session_id)
        if bucket is None:
            raise LookupError(f"game session {session_id} does not exist")
        if any(answer.question_id == question_id for answer in bucket.answers.values()):
            raise ValueError("question already answered in this session")
        answer = PlayerAnswerRecord(
            id=next(self._store._answer_ids),
            session_id=session_id,
            player_id=player_id,
            question_id=question_id,
            answer_text=answer_text,
            is_correct=is_correct,
            points_earned=points_earned,
            round_number=round_number,
            submitted_at=now,
        )
        bucket.answers[answer.id] = copy.copy(answer)
        return answer

    async def get_answer(self, room_id: str, answer_id: int) -> PlayerAnswerRecord | None:
        bucket = self._bucket(room_id)
        if bucket is None:
            return None
        answer = bucket.answers.get(answer_id)
        return copy.copy(answer) if answer else None

    async def save_answer(self, answer: PlayerAnswerRecord) -> None:
        bucket = self._bucket_for_session(answer.session_id)
        if bucket is not None and answer.id in bucket.answers:
            bucket.answers[answer.id] = copy.copy(answer)

    async def list_answers(
        self,
        session_id: int,
        *,
        question_id: int | None = None,
        limit: int | None = None,
    ) -> list[PlayerAnswerRecord]:
        bucket = self._bucket_for_session(session_id)
        if bucket is None:
            return []
        answers = [
            copy.copy(answer)
            for answer in bucket.answers.values()
            if question_id is None or answer.question_id == question_id
        ]
        answers.sort(key=lambda answer: (answer.submitted_at, answer.id), reverse=True)
        return answers[:limit] if limit is not None else answers

    async def get_question(self, question_id: int) -> QuestionRecord | None:
        question = self._store._questions.get(question_id)
        return copy.deepcopy(question) if question else None

    async def get_question_set(self, set_id: int) -> QuestionSetRecord | None:
        question_set = self._store._question_sets.get(set_id)
        return copy.copy(question_set) if question_set else None

    async def list_question_sets(self) -> list[QuestionSetRecord]:
        sets = [copy.copy(item) for item in self._store._question_sets.values() if item.is_active]
        sets.sort(key=lambda item: (item.display_order, item.id))
        return sets

    async def pick_question_ids(self, set_id: int, count: int) -> list[int]:
        pool = [question.id for question in self._store._questions.values() if question.set_id == set_id]
        return self._store._rng.sample(pool, min(count, len(pool)))


class MemoryRoomStore(RoomStore):
    """Process-local room store.

    Each room owns an asyncio.Lock; a failed transaction restores the room
    to the state it had when the lock was taken.
    """

    def __init__(
        self,
        question_sets: Iterable[QuestionSetRecord] = (),
        questions: Iterable[QuestionRecord] = (),
        *,
        rng: random.Random | None = None,
    ) -> None:
        self._buckets: dict[str, _RoomBucket] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._create_lock = asyncio.Lock()
        self._player_ids = itertools.count(1)
        self._game_ids = itertools.count(1)
        self._answer_ids = itertools.count(1)
        self._questions: dict[int, QuestionRecord] = {question.id: question for question in questions}
        self._question_sets: dict[int, QuestionSetRecord] = {}
        for question_set in question_sets:
            count = sum(1 for question in self._questions.values() if question.set_id == question_set.id)
            self._question_sets[question_set.id] = QuestionSetRecord(
                id=question_set.id,
                slug=question_set.slug,
                name_en=question_set.name_en,
                name_hu=question_set.name_hu,
                display_order=question_set.display_order,
                is_active=question_set.is_active,
                question_count=count,
            )
        self._rng = rng or random.Random()

    def _room_lock(self, room_id: str) -> asyncio.Lock:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        return lock

    @asynccontextmanager
    async def transaction(self, room_id: str | None = None) -> AsyncIterator[RoomStoreTransaction]:
        lock = self._create_lock if room_id is None else self._room_lock(room_id)
        async with lock:
            backup = copy.deepcopy(self._buckets.get(room_id)) if room_id is not None else None
            tx = _MemoryTransaction(self)
            try:
                yield tx
            except BaseException:
                if room_id is not None:
                    if backup is None:
                        self._buckets.pop(room_id, None)
                    else:
                        self._buckets[room_id] = backup
                for created_room_id in tx.created_rooms:
                    self._buckets.pop(created_room_id, None)
                raise

    @asynccontextmanager
    async def snapshot(self) -> AsyncIterator[RoomStoreTransaction]:
        yield _MemoryTransaction(self)

    async def purge_expired_rooms(self, now: datetime) -> int:
        expired = [room_id for room_id, bucket in self._buckets.items() if bucket.room.is_expired(now)]
        for room_id in expired:
            async with self._room_lock(room_id):
                bucket = self._buckets.get(room_id)
                if bucket is not None and bucket.room.is_expired(now):
                    del self._buckets[room_id]
        for room_id in list(self._locks):
            if room_id not in self._buckets and not self._locks[room_id].locked():
                del self._locks[room_id]
        if expired:
            logger.info("Purged %s expired rooms from memory store", len(expired))
        return len(expired)

    async def count_active_rooms(self, now: datetime) -> int:
        return sum(1 for bucket in self._buckets.values() if not bucket.room.is_expired(now))

    async def ping(self) -> bool:
        return True
