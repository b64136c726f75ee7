from __future__ import annotations

from typing import Any, Iterable, Sequence

from .runtime_types import PlayerRecord


def eligible_player_ids(turn_order: Sequence[int], players: Iterable[PlayerRecord]) -> list[int]:
    """Turn-order ids of players still in the room with lives left."""
    alive = {player.id for player in players if player.lives > 0}
    return [player_id for player_id in turn_order if player_id in alive]


def next_turn(
    turn_order: Sequence[int],
    current_player_id: int | None,
    eligible: Iterable[int],
) -> tuple[int | None, bool]:
    """Pick the next eligible player after `current_player_id`.

    Returns the player id (None when nobody is eligible) and whether the
    rotation wrapped past the end of the turn order.
    """
    eligible_ids = set(eligible)
    if not turn_order or not eligible_ids:
        return None, False

    try:
        current_pos = list(turn_order).index(current_player_id)
    except ValueError:
        current_pos = -1

    size = len(turn_order)
    for step in range(1, size + 1):
        pos = (current_pos + step) % size
        if turn_order[pos] in eligible_ids:
            return turn_order[pos], pos <= current_pos
    return None, False


def is_game_over_by_elimination(eligible_count: int, present_count: int) -> bool:
    if eligible_count == 0:
        return True
    return eligible_count == 1 and present_count > 1


def final_ranking(players: Iterable[PlayerRecord]) -> list[dict[str, Any]]:
    ordered = sorted(players, key=lambda player: (-player.score, -player.lives, player.joined_at, player.id))
    return [
        {
            "rank": index,
            "playerId": player.id,
            "nickname": player.nickname,
            "score": player.score,
            "lives": player.lives,
            "eliminated": player.is_eliminated,
        }
        for index, player in enumerate(ordered, start=1)
    ]
