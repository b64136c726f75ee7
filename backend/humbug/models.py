from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.schema import CreateIndex, CreateTable


class Base(DeclarativeBase):
    pass


class QuestionSet(Base):
    __tablename__ = "question_sets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    name_en: Mapped[str] = mapped_column(String(120), nullable=False)
    name_hu: Mapped[str | None] = mapped_column(String(120), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    set_id: Mapped[int] = mapped_column(
        ForeignKey("question_sets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_en: Mapped[str] = mapped_column(Text, nullable=False)
    question_hu: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str | None] = mapped_column(String(80), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("true"))


class AcceptedAnswer(Base):
    __tablename__ = "answers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    question_id: Mapped[int] = mapped_column(
        ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    answer_en: Mapped[str | None] = mapped_column(Text, nullable=True)
    answer_hu: Mapped[str | None] = mapped_column(Text, nullable=True)


class GameRoom(Base):
    __tablename__ = "game_rooms"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    code: Mapped[str] = mapped_column(String(6), nullable=False, index=True)
    host_session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    max_players: Mapped[int] = mapped_column(Integer, nullable=False)
    question_set_id: Mapped[int | None] = mapped_column(
        ForeignKey("question_sets.id", ondelete="SET NULL"), nullable=True
    )
    state: Mapped[str] = mapped_column(String(16), nullable=False, server_default=text("'lobby'"))
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    last_activity: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class RoomPlayer(Base):
    __tablename__ = "room_players"
    __table_args__ = (UniqueConstraint("room_id", "session_id"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    room_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("game_rooms.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id: Mapped[str] = mapped_column(String(128), nullable=False)
    nickname: Mapped[str] = mapped_column(String(50), nullable=False)
    lives: Mapped[int] = mapped_column(Integer, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    is_host: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_seen: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class MultiplayerSession(Base):
    __tablename__ = "multiplayer_sessions"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    room_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("game_rooms.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    question_ids: Mapped[list[int]] = mapped_column(ARRAY(Integer), nullable=False)
    turn_order: Mapped[list[int]] = mapped_column(ARRAY(BigInteger), nullable=False)
    total_questions: Mapped[int] = mapped_column(Integer, nullable=False)
    current_question_index: Mapped[int] = mapped_column(Integer, nullable=False)
    current_question_id: Mapped[int] = mapped_column(Integer, nullable=False)
    current_turn_player_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    round_number: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("1"))
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    last_answer_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    challenge_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_challenge_event: Mapped[str | None] = mapped_column(Text, nullable=True)


class PlayerAnswer(Base):
    __tablename__ = "player_answers"
    __table_args__ = (UniqueConstraint("session_id", "question_id"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    session_id: Mapped[int] = mapped_column(
        ForeignKey("multiplayer_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    player_id: Mapped[int | None] = mapped_column(
        ForeignKey("room_players.id", ondelete="SET NULL"), nullable=True
    )
    question_id: Mapped[int] = mapped_column(Integer, nullable=False)
    answer_text: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    points_earned: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    round_number: Mapped[int] = mapped_column(Integer, nullable=False)
    revealed: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=text("false"))
    challenged_by: Mapped[int | None] = mapped_column(
        ForeignKey("room_players.id", ondelete="SET NULL"), nullable=True
    )
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


def schema_statements() -> list[str]:
    """PostgreSQL DDL for every table, safe to run on each startup."""
    dialect = postgresql.dialect()
    statements: list[str] = []
    for table in Base.metadata.sorted_tables:
        statements.append(str(CreateTable(table, if_not_exists=True).compile(dialect=dialect)))
        for index in sorted(table.indexes, key=lambda item: item.name or ""):
            statements.append(str(CreateIndex(index, if_not_exists=True).compile(dialect=dialect)))
    return statements
