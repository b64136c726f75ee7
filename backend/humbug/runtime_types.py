from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

RoomState = Literal["lobby", "playing", "finished"]
TurnPhase = Literal["awaiting_answer", "awaiting_challenge", "resolved"]
PenaltyTarget = Literal["challenger", "answerer"]
GameOverReason = Literal["completed", "all_eliminated"]


@dataclass
class RoomRecord:
    id: str
    code: str
    host_session_id: str
    max_players: int
    question_set_id: int | None
    state: RoomState
    state_version: int
    last_activity: datetime
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass
class PlayerRecord:
    id: int
    room_id: str
    session_id: str
    nickname: str
    lives: int
    score: int
    is_host: bool
    joined_at: datetime
    last_seen: datetime

    @property
    def is_eliminated(self) -> bool:
        return self.lives <= 0


@dataclass
class GameSessionRecord:
    id: int
    room_id: str
    question_ids: list[int]
    turn_order: list[int]
    total_questions: int
    current_question_index: int
    current_question_id: int
    current_turn_player_id: int | None
    round_number: int
    started_at: datetime
    last_updated: datetime
    last_answer_at: datetime | None = None
    challenge_deadline: datetime | None = None
    last_challenge_event: dict[str, Any] | None = None


@dataclass
class PlayerAnswerRecord:
    id: int
    session_id: int
    player_id: int | None
    question_id: int
    answer_text: str
    is_correct: bool
    points_earned: int
    round_number: int
    submitted_at: datetime
    revealed: bool = False
    challenged_by: int | None = None


@dataclass
class QuestionRecord:
    id: int
    set_id: int
    text_en: str
    text_hu: str | None = None
    category: str | None = None
    accepted_answers: list[str] = field(default_factory=list)


@dataclass
class QuestionSetRecord:
    id: int
    slug: str
    name_en: str
    name_hu: str | None = None
    display_order: int = 0
    is_active: bool = True
    question_count: int = 0
