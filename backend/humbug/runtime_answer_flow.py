from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from .errors import (
    AlreadyResolved,
    Forbidden,
    InvalidState,
    NotFound,
    SelfChallenge,
    ValidationFailed,
    WindowExpired,
)
from .runtime_constants import ANSWER_MAX_LENGTH, UNKNOWN_PLAYER_NAME
from .runtime_utils import answer_matches, iso_or_none, mask_for_logs

if TYPE_CHECKING:
    from .runtime import HumbugRuntime
    from .runtime_types import GameSessionRecord, PlayerAnswerRecord, PlayerRecord
    from .store import RoomStoreTransaction


def challenge_deadline_for(runtime: "HumbugRuntime", answer: "PlayerAnswerRecord") -> datetime:
    return answer.submitted_at + timedelta(seconds=runtime.rules.challenge_window_seconds)


def _player_by_id(players: list["PlayerRecord"], player_id: int | None) -> "PlayerRecord | None":
    if player_id is None:
        return None
    for player in players:
        if player.id == player_id:
            return player
    return None


def _lose_life(player: "PlayerRecord") -> None:
    player.lives = max(0, player.lives - 1)


async def submit_answer(runtime: "HumbugRuntime", session_id: str, *, room_id: str, answer: str) -> dict[str, Any]:
    text = str(answer or "").strip()
    if not text:
        raise ValidationFailed("Answer is required")
    if len(text) > ANSWER_MAX_LENGTH:
        raise ValidationFailed(f"Answer must be at most {ANSWER_MAX_LENGTH} characters")

    now = runtime.now()
    async with runtime.store.transaction(room_id) as tx:
        room = await runtime._require_room(tx, room_id, now)
        players = await tx.list_players(room.id)
        player = next((item for item in players if item.session_id == session_id), None)
        if player is None:
            raise NotFound("You are not in this room")
        game = await tx.get_game(room.id)
        if room.state != "playing" or game is None:
            raise InvalidState("Game is not in progress")
        if await tx.list_answers(game.id, question_id=game.current_question_id, limit=1):
            raise InvalidState("This question has already been answered")
        if game.current_turn_player_id != player.id:
            raise Forbidden("It is not your turn")

        question = await tx.get_question(game.current_question_id)
        if question is None:
            raise InvalidState("Current question is no longer available")

        correct = answer_matches(text, question.accepted_answers, runtime.rules.answer_matching)
        points = runtime.rules.points_per_correct if correct else 0
        record = await tx.insert_answer(
            session_id=game.id,
            player_id=player.id,
            question_id=game.current_question_id,
            answer_text=text,
            is_correct=correct,
            points_earned=points,
            round_number=game.round_number,
            now=now,
        )

        player.score += points
        player.last_seen = now
        await tx.save_player(player)

        deadline = challenge_deadline_for(runtime, record)
        game.last_answer_at = now
        game.challenge_deadline = deadline
        game.last_updated = now
        await tx.save_game(game)

        runtime._bump(room, now)
        await tx.save_room(room)

    runtime._log_event(
        "answered",
        roomId=room.id,
        playerId=player.id,
        answerId=record.id,
        questionId=record.question_id,
        correct=correct,
    )
    return {
        "correct": correct,
        "pointsEarned": points,
        "livesRemaining": player.lives,
        "answerId": record.id,
        "challengeDeadline": iso_or_none(deadline),
        "awaitingChallenge": True,
    }


async def challenge_answer(
    runtime: "HumbugRuntime",
    session_id: str,
    *,
    room_id: str,
    answer_id: int,
) -> dict[str, Any]:
    now = runtime.now()
    async with runtime.store.transaction(room_id) as tx:
        room = await runtime._require_room(tx, room_id, now)
        players = await tx.list_players(room.id)
        challenger = next((item for item in players if item.session_id == session_id), None)
        if challenger is None:
            raise NotFound("You are not in this room")
        game = await tx.get_game(room.id)
        if room.state != "playing" or game is None:
            raise InvalidState("Game is not in progress")

        answer = await tx.get_answer(room.id, answer_id)
        if answer is None:
            raise NotFound("Answer not found")
        if answer.revealed:
            raise AlreadyResolved()
        if now > challenge_deadline_for(runtime, answer):
            raise WindowExpired()
        if answer.player_id == challenger.id:
            raise SelfChallenge()
        if challenger.is_eliminated:
            raise Forbidden("Eliminated players cannot call HUMBUG")

        answerer = _player_by_id(players, answer.player_id)
        answer.revealed = True
        answer.challenged_by = challenger.id
        await tx.save_answer(answer)

        if answer.is_correct:
            penalty_target = "challenger"
            penalized = challenger
        else:
            penalty_target = "answerer"
            penalized = answerer
        if penalized is not None:
            _lose_life(penalized)
            await tx.save_player(penalized)

        event = {
            "answerId": answer.id,
            "challengerId": challenger.id,
            "challengerName": challenger.nickname,
            "answererId": answer.player_id,
            "answererName": answerer.nickname if answerer else UNKNOWN_PLAYER_NAME,
            "answerText": answer.answer_text,
            "answerWasCorrect": answer.is_correct,
            "penaltyTarget": penalty_target,
            "penaltyPlayerId": penalized.id if penalized else None,
            "penaltyPlayerName": penalized.nickname if penalized else UNKNOWN_PLAYER_NAME,
            "eliminated": bool(penalized and penalized.is_eliminated),
            "livesRemaining": penalized.lives if penalized else 0,
            "timestamp": iso_or_none(now),
        }
        game.last_challenge_event = event
        game.challenge_deadline = None
        game.last_updated = now
        await tx.save_game(game)

        runtime._bump(room, now)
        await tx.save_room(room)

    runtime._log_event(
        "challenged",
        roomId=room.id,
        answerId=answer.id,
        challenger=mask_for_logs(session_id),
        penaltyTarget=penalty_target,
        eliminated=event["eliminated"],
    )
    return dict(event)


async def resolve_pending_answers(
    runtime: "HumbugRuntime",
    tx: "RoomStoreTransaction",
    game: "GameSessionRecord",
    players: list["PlayerRecord"],
    now: datetime,
) -> int:
    """Reveal unchallenged answers for the current question.

    An unchallenged incorrect answer costs its submitter one life. Called by
    the host's advance, which also closes a window that is still open.
    """
    resolved = 0
    answers = await tx.list_answers(game.id, question_id=game.current_question_id)
    for answer in answers:
        if answer.revealed:
            continue
        answer.revealed = True
        await tx.save_answer(answer)
        resolved += 1

        answerer = _player_by_id(players, answer.player_id)
        if not answer.is_correct and answerer is not None:
            _lose_life(answerer)
            await tx.save_player(answerer)

        runtime._log_event(
            "window_closed",
            roomId=game.room_id,
            answerId=answer.id,
            correct=answer.is_correct,
            early=now <= challenge_deadline_for(runtime, answer),
        )

    if resolved:
        game.challenge_deadline = None
    return resolved
