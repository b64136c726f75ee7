from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from .errors import Forbidden, InsufficientContent, InsufficientPlayers, InvalidState, NotFound
from .runtime_answer_flow import resolve_pending_answers
from .runtime_rotation import eligible_player_ids, final_ranking, is_game_over_by_elimination, next_turn
from .runtime_utils import mask_for_logs

if TYPE_CHECKING:
    from .runtime import HumbugRuntime
    from .runtime_types import GameOverReason, GameSessionRecord, PlayerRecord, RoomRecord
    from .store import RoomStoreTransaction


async def _resolve_question_set(tx: "RoomStoreTransaction", set_id: int | None) -> int:
    if set_id is None:
        sets = await tx.list_question_sets()
        if not sets:
            raise InsufficientContent("No question sets are available")
        return sets[0].id

    question_set = await tx.get_question_set(set_id)
    if question_set is None or not question_set.is_active:
        raise NotFound("Question set not found")
    return question_set.id


async def start_game(
    runtime: "HumbugRuntime",
    session_id: str,
    *,
    room_id: str,
    question_set_id: int | None = None,
) -> dict[str, Any]:
    rules = runtime.rules
    now = runtime.now()
    async with runtime.store.transaction(room_id) as tx:
        room = await runtime._require_room(tx, room_id, now)
        if room.host_session_id != session_id:
            raise Forbidden("Only the host can start the game")
        if room.state != "lobby":
            raise InvalidState("Game already started")

        players = await tx.list_players(room.id)
        if len(players) < rules.min_players:
            raise InsufficientPlayers(f"Need at least {rules.min_players} players to start")

        set_id = await _resolve_question_set(tx, question_set_id or room.question_set_id)
        question_ids = await tx.pick_question_ids(set_id, rules.questions_per_game)
        if len(question_ids) < rules.questions_per_game:
            raise InsufficientContent(
                f"Not enough questions in set (need {rules.questions_per_game}, found {len(question_ids)})"
            )

        game = await tx.insert_game(
            room_id=room.id,
            question_ids=question_ids,
            turn_order=[player.id for player in players],
            now=now,
        )
        room.state = "playing"
        room.question_set_id = set_id
        runtime._bump(room, now)
        await tx.save_room(room)

    runtime._log_event(
        "started",
        roomId=room.id,
        questionSetId=set_id,
        players=len(game.turn_order),
        totalQuestions=game.total_questions,
    )
    return {
        "started": True,
        "totalQuestions": game.total_questions,
        "firstPlayerId": game.current_turn_player_id,
    }


async def _finish_game(
    runtime: "HumbugRuntime",
    tx: "RoomStoreTransaction",
    room: "RoomRecord",
    game: "GameSessionRecord",
    players: list["PlayerRecord"],
    reason: "GameOverReason",
    now: datetime,
) -> dict[str, Any]:
    room.state = "finished"
    game.challenge_deadline = None
    game.last_updated = now
    await tx.save_game(game)
    runtime._bump(room, now)
    await tx.save_room(room)
    return {"gameOver": True, "reason": reason, "finalScores": final_ranking(players)}


async def advance_turn(runtime: "HumbugRuntime", session_id: str, *, room_id: str) -> dict[str, Any]:
    now = runtime.now()
    async with runtime.store.transaction(room_id) as tx:
        room = await runtime._require_room(tx, room_id, now)
        if room.host_session_id != session_id:
            raise Forbidden("Only the host can advance")
        game = await tx.get_game(room.id)
        if room.state != "playing" or game is None:
            raise InvalidState("Game is not in progress")

        players = await tx.list_players(room.id)
        await resolve_pending_answers(runtime, tx, game, players, now)

        eligible = eligible_player_ids(game.turn_order, players)
        next_index = game.current_question_index + 1
        if is_game_over_by_elimination(len(eligible), len(players)):
            result = await _finish_game(runtime, tx, room, game, players, "all_eliminated", now)
        elif next_index >= game.total_questions:
            result = await _finish_game(runtime, tx, room, game, players, "completed", now)
        else:
            next_player_id, wrapped = next_turn(game.turn_order, game.current_turn_player_id, eligible)
            game.current_question_index = next_index
            game.current_question_id = game.question_ids[next_index]
            game.current_turn_player_id = next_player_id
            if wrapped:
                game.round_number += 1
            game.challenge_deadline = None
            game.last_challenge_event = None
            game.last_updated = now
            await tx.save_game(game)
            runtime._bump(room, now)
            await tx.save_room(room)
            result = {
                "nextQuestionIndex": next_index,
                "nextPlayerId": next_player_id,
                "roundNumber": game.round_number,
            }

    if result.get("gameOver"):
        runtime._log_event("finished", roomId=room.id, reason=result["reason"], host=mask_for_logs(session_id))
    else:
        runtime._log_event(
            "advanced",
            roomId=room.id,
            questionIndex=result["nextQuestionIndex"],
            playerId=result["nextPlayerId"],
            round=result["roundNumber"],
        )
    return result
