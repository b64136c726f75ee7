from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

from humbug.config import GameRules
from humbug.memory_store import MemoryRoomStore
from humbug.runtime import HumbugRuntime
from humbug.runtime_types import QuestionRecord, QuestionSetRecord


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


def _questions(set_id: int, first_id: int, count: int) -> list[QuestionRecord]:
    return [
        QuestionRecord(
            id=first_id + offset,
            set_id=set_id,
            text_en=f"Question {first_id + offset}?",
            text_hu=f"Kérdés {first_id + offset}?",
            category="General",
            accepted_answers=[f"answer-{first_id + offset}"],
        )
        for offset in range(count)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryRoomStore:
    question_sets = [
        QuestionSetRecord(id=1, slug="main", name_en="Main Pack", display_order=0),
        QuestionSetRecord(id=2, slug="tiny", name_en="Tiny Pack", display_order=1),
    ]
    questions = _questions(1, 1, 12) + _questions(2, 101, 3)
    return MemoryRoomStore(question_sets, questions, rng=random.Random(7))


@pytest.fixture
def make_runtime(store, clock):
    def _make(**overrides) -> HumbugRuntime:
        return HumbugRuntime(store, GameRules(**overrides), clock=clock)

    return _make


@pytest.fixture
def runtime(make_runtime) -> HumbugRuntime:
    return make_runtime()


def session_for(name: str) -> str:
    return f"{name.lower()}-session"


@dataclass
class Table:
    runtime: HumbugRuntime
    room_id: str
    code: str
    player_ids: dict[str, int] = field(default_factory=dict)

    def session(self, name: str) -> str:
        return session_for(name)

    async def state(self, name: str | None = None) -> dict:
        result = await self.runtime.get_state(session_for(name) if name else None, room_id=self.room_id)
        return result.payload

    async def current_question_id(self) -> int:
        payload = await self.state()
        return payload["gameState"]["currentQuestion"]["id"]

    async def correct_answer(self) -> str:
        return f"answer-{await self.current_question_id()}"

    async def answer(self, name: str, text: str) -> dict:
        return await self.runtime.submit_answer(session_for(name), room_id=self.room_id, answer=text)

    async def challenge(self, name: str, answer_id: int) -> dict:
        return await self.runtime.challenge(session_for(name), room_id=self.room_id, answer_id=answer_id)

    async def advance(self, name: str) -> dict:
        return await self.runtime.advance(session_for(name), room_id=self.room_id)

    async def player(self, name: str) -> dict:
        payload = await self.state(name)
        return next(item for item in payload["players"] if item["id"] == self.player_ids[name])


@pytest.fixture
def seat_players():
    """Create a room hosted by the first name, seat everyone, optionally start."""

    async def _seat(runtime: HumbugRuntime, *names: str, max_players: int = 4, start: bool = True) -> Table:
        created = await runtime.create_room(session_for(names[0]), max_players=max_players)
        table = Table(runtime=runtime, room_id=created["roomId"], code=created["code"])
        for name in names:
            joined = await runtime.join_room(session_for(name), code=created["code"], nickname=name)
            table.player_ids[name] = joined["playerId"]
        if start:
            await runtime.start_game(session_for(names[0]), room_id=table.room_id)
        return table

    return _seat
