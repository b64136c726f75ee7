from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from .errors import NotFound, NotJoinable, RoomCodeExhausted, ValidationFailed
from .runtime_constants import ROOM_CODE_ATTEMPTS, ROOM_CODE_RE
from .runtime_rotation import eligible_player_ids, next_turn
from .runtime_utils import iso_or_none, mask_for_logs, sanitize_nickname, sanitize_room_code

if TYPE_CHECKING:
    from .runtime import HumbugRuntime
    from .runtime_types import PlayerRecord
    from .store import RoomStoreTransaction


async def create_room(
    runtime: "HumbugRuntime",
    session_id: str,
    *,
    max_players: int,
    question_set_id: int | None = None,
) -> dict[str, Any]:
    rules = runtime.rules
    if not rules.min_players <= int(max_players) <= rules.max_players:
        raise ValidationFailed(f"maxPlayers must be between {rules.min_players} and {rules.max_players}")

    now = runtime.now()
    await runtime.store.purge_expired_rooms(now)

    async with runtime.store.transaction() as tx:
        if question_set_id is not None:
            question_set = await tx.get_question_set(question_set_id)
            if question_set is None or not question_set.is_active:
                raise NotFound("Question set not found")

        code = None
        for _ in range(ROOM_CODE_ATTEMPTS):
            candidate = runtime.code_factory()
            if await tx.claim_room_code(candidate, now=now):
                code = candidate
                break
        if code is None:
            raise RoomCodeExhausted(f"No free room code after {ROOM_CODE_ATTEMPTS} attempts")

        room = await tx.insert_room(
            room_id=str(uuid.uuid4()),
            code=code,
            host_session_id=session_id,
            max_players=int(max_players),
            question_set_id=question_set_id,
            now=now,
            expires_at=now + timedelta(seconds=rules.room_ttl_seconds),
        )

    runtime._log_event(
        "created",
        roomId=room.id,
        code=room.code,
        host=mask_for_logs(session_id),
        maxPlayers=room.max_players,
        questionSetId=room.question_set_id,
    )
    return {
        "roomId": room.id,
        "code": room.code,
        "state": room.state,
        "maxPlayers": room.max_players,
        "expiresAt": iso_or_none(room.expires_at),
    }


def _find_player(players: list["PlayerRecord"], session_id: str) -> "PlayerRecord | None":
    for player in players:
        if player.session_id == session_id:
            return player
    return None


async def join_room(runtime: "HumbugRuntime", session_id: str, *, code: str, nickname: str) -> dict[str, Any]:
    room_code = sanitize_room_code(code)
    clean_nickname = sanitize_nickname(nickname)
    if not ROOM_CODE_RE.match(room_code):
        raise ValidationFailed("Room code must be 6 letters or digits")
    if not clean_nickname:
        raise ValidationFailed("Nickname is required")

    now = runtime.now()
    async with runtime.store.snapshot() as tx:
        located = await tx.get_room_by_code(room_code, now=now, include_expired=True)
    if located is None:
        raise NotJoinable("Room not found")
    if located.is_expired(now):
        raise NotJoinable("Room expired")

    async with runtime.store.transaction(located.id) as tx:
        room = await tx.lock_room(located.id)
        if room is None:
            raise NotJoinable("Room not found")
        if room.is_expired(now):
            raise NotJoinable("Room expired")
        if room.state != "lobby":
            raise NotJoinable("Game already started")

        players = await tx.list_players(room.id)
        existing = _find_player(players, session_id)
        if existing is not None:
            nickname_changed = existing.nickname != clean_nickname
            existing.nickname = clean_nickname
            existing.last_seen = now
            await tx.save_player(existing)
            if nickname_changed:
                runtime._bump(room, now)
                await tx.save_room(room)
            player, rejoined = existing, True
        else:
            if len(players) >= room.max_players:
                raise NotJoinable("Room is full")
            has_host = any(item.is_host for item in players)
            is_host = room.host_session_id == session_id and not has_host
            if not has_host and not is_host:
                # Creator has not joined (or left): the first player in keeps the room hosted.
                is_host = True
                room.host_session_id = session_id
            player = await tx.insert_player(
                room_id=room.id,
                session_id=session_id,
                nickname=clean_nickname,
                is_host=is_host,
                lives=runtime.rules.starting_lives,
                now=now,
            )
            rejoined = False
            runtime._bump(room, now)
            await tx.save_room(room)

    runtime._log_event(
        "rejoined" if rejoined else "joined",
        roomId=room.id,
        code=room.code,
        playerId=player.id,
        session=mask_for_logs(session_id),
        isHost=player.is_host,
    )
    return {
        "roomId": room.id,
        "playerId": player.id,
        "isHost": player.is_host,
        "nickname": player.nickname,
        "rejoined": rejoined,
    }


async def _transfer_host(tx: "RoomStoreTransaction", room, remaining: list["PlayerRecord"]) -> "PlayerRecord | None":
    if any(player.is_host for player in remaining):
        return None
    new_host = remaining[0]
    new_host.is_host = True
    await tx.save_player(new_host)
    room.host_session_id = new_host.session_id
    return new_host


async def leave_room(runtime: "HumbugRuntime", session_id: str, *, room_id: str) -> dict[str, Any]:
    now = runtime.now()
    async with runtime.store.transaction(room_id) as tx:
        room = await runtime._require_room(tx, room_id, now)
        players = await tx.list_players(room.id)
        leaving = _find_player(players, session_id)
        if leaving is None:
            raise NotFound("You are not in this room")

        await tx.delete_player(leaving.id)
        remaining = [player for player in players if player.id != leaving.id]
        if not remaining:
            await tx.delete_room(room.id)
            runtime._log_event("closed", roomId=room.id, code=room.code, reason="empty")
            return {"left": True}

        new_host = await _transfer_host(tx, room, remaining) if leaving.is_host else None

        if room.state == "playing":
            game = await tx.get_game(room.id)
            if game is not None and game.current_turn_player_id == leaving.id:
                answered = await tx.list_answers(game.id, question_id=game.current_question_id, limit=1)
                if not answered:
                    eligible = eligible_player_ids(game.turn_order, remaining)
                    next_player_id, _ = next_turn(game.turn_order, leaving.id, eligible)
                    game.current_turn_player_id = next_player_id
                    game.last_updated = now
                    await tx.save_game(game)

        runtime._bump(room, now)
        await tx.save_room(room)

    runtime._log_event(
        "left",
        roomId=room.id,
        playerId=leaving.id,
        session=mask_for_logs(session_id),
        newHostId=new_host.id if new_host else None,
    )
    return {"left": True}
