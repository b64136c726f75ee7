from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from .runtime_rotation import final_ranking
from .runtime_types import (
    GameSessionRecord,
    PlayerAnswerRecord,
    PlayerRecord,
    QuestionRecord,
    RoomRecord,
    TurnPhase,
)
from .runtime_utils import iso_or_none


@dataclass
class StateResult:
    etag: str
    unchanged: bool
    payload: dict[str, Any] | None = None


def version_tag(room: RoomRecord) -> str:
    return f'"{room.id}:{room.state_version}"'


def version_tag_matches(if_none_match: str | None, tag: str) -> bool:
    if not if_none_match:
        return False
    for candidate in if_none_match.split(","):
        value = candidate.strip()
        if value.startswith("W/"):
            value = value[2:]
        if value == "*" or value == tag:
            return True
    return False


def turn_phase(
    game: GameSessionRecord | None,
    current_answer: PlayerAnswerRecord | None,
    now: datetime,
) -> TurnPhase | None:
    if game is None:
        return None
    if current_answer is None:
        return "awaiting_answer"
    if not current_answer.revealed and game.challenge_deadline is not None and now <= game.challenge_deadline:
        return "awaiting_challenge"
    return "resolved"


def _withheld_points(answers: Iterable[PlayerAnswerRecord]) -> dict[int, int]:
    withheld: dict[int, int] = {}
    for answer in answers:
        if not answer.revealed and answer.player_id is not None and answer.points_earned:
            withheld[answer.player_id] = withheld.get(answer.player_id, 0) + answer.points_earned
    return withheld


def build_answer_view(answer: PlayerAnswerRecord, nicknames: dict[int, str]) -> dict[str, Any]:
    nickname = nicknames.get(answer.player_id) if answer.player_id is not None else None
    view: dict[str, Any] = {
        "answerId": answer.id,
        "playerId": answer.player_id,
        "playerNickname": nickname,
        "questionId": answer.question_id,
        "roundNumber": answer.round_number,
        "answerText": answer.answer_text if answer.revealed else None,
        "submittedAt": iso_or_none(answer.submitted_at),
        "revealed": answer.revealed,
        "challengedBy": answer.challenged_by,
    }
    if answer.revealed:
        view["verdict"] = "correct" if answer.is_correct else "incorrect"
        view["isCorrect"] = answer.is_correct
        view["pointsEarned"] = answer.points_earned
    else:
        view["verdict"] = "hidden"
        view["isCorrect"] = None
        view["pointsEarned"] = None
    return view


def build_state_payload(
    *,
    room: RoomRecord,
    players: list[PlayerRecord],
    session_id: str | None,
    game: GameSessionRecord | None,
    question: QuestionRecord | None,
    recent_answers: list[PlayerAnswerRecord],
    current_answer: PlayerAnswerRecord | None,
    now: datetime,
) -> dict[str, Any]:
    """Snapshot of a room as seen by one caller.

    Verdicts and points of unrevealed answers are withheld from everyone,
    including the submitter; the submitter learns the verdict from the
    answer response only.
    """
    me = next((player for player in players if session_id and player.session_id == session_id), None)
    withheld = _withheld_points(recent_answers)
    nicknames = {player.id: player.nickname for player in players}

    payload: dict[str, Any] = {
        "room": {
            "id": room.id,
            "code": room.code,
            "state": room.state,
            "maxPlayers": room.max_players,
            "questionSetId": room.question_set_id,
            "stateVersion": room.state_version,
            "createdAt": iso_or_none(room.created_at),
            "expiresAt": iso_or_none(room.expires_at),
        },
        "players": [
            {
                "id": player.id,
                "nickname": player.nickname,
                "lives": player.lives,
                "score": player.score - withheld.get(player.id, 0),
                "isHost": player.is_host,
                "isEliminated": player.is_eliminated,
                "isCurrentPlayer": me is not None and me.id == player.id,
                "joinedAt": iso_or_none(player.joined_at),
            }
            for player in players
        ],
        "currentPlayer": (
            {"id": me.id, "nickname": me.nickname, "isHost": me.is_host} if me is not None else None
        ),
        "gameState": None,
        "serverTime": iso_or_none(now),
    }

    if game is not None and room.state == "playing":
        payload["gameState"] = {
            "currentQuestionIndex": game.current_question_index,
            "totalQuestions": game.total_questions,
            "roundNumber": game.round_number,
            "currentQuestion": (
                {
                    "id": question.id,
                    "textEn": question.text_en,
                    "textHu": question.text_hu,
                    "category": question.category,
                }
                if question is not None
                else None
            ),
            "currentTurnPlayerId": game.current_turn_player_id,
            "currentTurnPlayerNickname": nicknames.get(game.current_turn_player_id or -1),
            "turnPhase": turn_phase(game, current_answer, now),
            "challengeDeadline": iso_or_none(game.challenge_deadline),
            "lastChallengeEvent": game.last_challenge_event,
            "recentAnswers": [build_answer_view(answer, nicknames) for answer in recent_answers],
        }

    if room.state == "finished":
        payload["finalScores"] = final_ranking(players)
        if game is not None:
            payload["lastChallengeEvent"] = game.last_challenge_event

    return payload
