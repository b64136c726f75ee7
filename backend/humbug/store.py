from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime
from typing import Any

from .runtime_types import (
    GameSessionRecord,
    PlayerAnswerRecord,
    PlayerRecord,
    QuestionRecord,
    QuestionSetRecord,
    RoomRecord,
)


class RoomStoreTransaction(ABC):
    """Operations available inside one store transaction.

    A transaction opened for a room id holds that room's lock until it ends,
    so read-modify-write sequences on the room cannot interleave.
    """

    @abstractmethod
    async def lock_room(self, room_id: str) -> RoomRecord | None: ...

    @abstractmethod
    async def get_room_by_code(
        self, code: str, *, now: datetime, include_expired: bool = False
    ) -> RoomRecord | None: ...

    @abstractmethod
    async def claim_room_code(self, code: str, *, now: datetime) -> bool: ...

    @abstractmethod
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
    ) -> RoomRecord: ...

    @abstractmethod
    async def save_room(self, room: RoomRecord) -> None: ...

    @abstractmethod
    async def delete_room(self, room_id: str) -> None: ...

    @abstractmethod
    async def list_players(self, room_id: str) -> list[PlayerRecord]: ...

    @abstractmethod
    async def insert_player(
        self,
        *,
        room_id: str,
        session_id: str,
        nickname: str,
        is_host: bool,
        lives: int,
        now: datetime,
    ) -> PlayerRecord: ...

    @abstractmethod
    async def save_player(self, player: PlayerRecord) -> None: ...

    @abstractmethod
    async def delete_player(self, player_id: int) -> None: ...

    @abstractmethod
    async def get_game(self, room_id: str) -> GameSessionRecord | None: ...

    @abstractmethod
    async def insert_game(
        self,
        *,
        room_id: str,
        question_ids: list[int],
        turn_order: list[int],
        now: datetime,
    ) -> GameSessionRecord: ...

    @abstractmethod
    async def save_game(self, game: GameSessionRecord) -> None: ...

    @abstractmethod
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
    ) -> PlayerAnswerRecord: ...

    @abstractmethod
    async def get_answer(self, room_id: str, answer_id: int) -> PlayerAnswerRecord | None: ...

    @abstractmethod
    async def save_answer(self, answer: PlayerAnswerRecord) -> None: ...

    @abstractmethod
    async def list_answers(
        self,
        session_id: int,
        *,
        question_id: int | None = None,
        limit: int | None = None,
    ) -> list[PlayerAnswerRecord]: ...

    @abstractmethod
    async def get_question(self, question_id: int) -> QuestionRecord | None: ...

    @abstractmethod
    async def get_question_set(self, set_id: int) -> QuestionSetRecord | None: ...

    @abstractmethod
    async def list_question_sets(self) -> list[QuestionSetRecord]: ...

    @abstractmethod
    async def pick_question_ids(self, set_id: int, count: int) -> list[int]: ...


class RoomStore(ABC):
    @abstractmethod
    def transaction(self, room_id: str | None = None) -> AbstractAsyncContextManager[RoomStoreTransaction]:
        """Open a read-write transaction, locking `room_id` when given."""

    @abstractmethod
    def snapshot(self) -> AbstractAsyncContextManager[RoomStoreTransaction]:
        """Open a consistent read-only view."""

    @abstractmethod
    async def purge_expired_rooms(self, now: datetime) -> int: ...

    @abstractmethod
    async def count_active_rooms(self, now: datetime) -> int: ...

    @abstractmethod
    async def ping(self) -> bool: ...

    async def close(self) -> None:
        return None

    def describe(self) -> dict[str, Any]:
        return {"backend": type(self).__name__}
