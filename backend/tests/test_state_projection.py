from __future__ import annotations

import pytest

from humbug.errors import NotFound, ValidationFailed
from humbug.runtime import HumbugRuntime
from humbug.runtime_state_sync import version_tag_matches


async def test_state_by_code_and_by_id_agree(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob", start=False)

    by_id = await runtime.get_state("alice-session", room_id=table.room_id)
    by_code = await runtime.get_state("alice-session", code=table.code.lower())

    assert by_id.payload["room"] == by_code.payload["room"]
    assert by_id.etag == by_code.etag == f'"{table.room_id}:2"'


async def test_state_requires_a_known_room(runtime):
    with pytest.raises(ValidationFailed):
        await runtime.get_state(None)
    with pytest.raises(NotFound):
        await runtime.get_state(None, room_id="8f5b8e2c-0000-4000-8000-000000000000")
    with pytest.raises(NotFound):
        await runtime.get_state(None, code="ZZZZZZ")


async def test_version_tag_round_trip(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")
    first = await runtime.get_state("bob-session", room_id=table.room_id)

    again = await runtime.get_state("bob-session", room_id=table.room_id, if_none_match=first.etag)
    assert again.unchanged is True
    assert again.payload is None
    assert again.etag == first.etag

    await table.answer("Alice", "xyz")
    changed = await runtime.get_state("bob-session", room_id=table.room_id, if_none_match=first.etag)
    assert changed.unchanged is False
    assert changed.etag != first.etag


async def test_reused_code_does_not_match_old_tag(store, clock, seat_players):
    runtime = HumbugRuntime(store, clock=clock, code_factory=lambda: "AAAAAA")
    first = await seat_players(runtime, "Alice", "Bob", start=False)
    stale = await runtime.get_state(None, code="AAAAAA")
    for name in ("Alice", "Bob"):
        await runtime.leave_room(f"{name.lower()}-session", room_id=first.room_id)

    second = await seat_players(runtime, "Carol", "Dave", start=False)
    fresh = await runtime.get_state(None, code="AAAAAA", if_none_match=stale.etag)

    assert second.room_id != first.room_id
    assert fresh.unchanged is False
    assert fresh.payload["room"]["stateVersion"] == stale.payload["room"]["stateVersion"]
    assert fresh.payload["room"]["id"] == second.room_id


def test_version_tag_matching_accepts_weak_and_listed_tags():
    assert version_tag_matches('"4"', '"4"')
    assert version_tag_matches('W/"4"', '"4"')
    assert version_tag_matches('"3", "4"', '"4"')
    assert not version_tag_matches('"3"', '"4"')
    assert not version_tag_matches(None, '"4"')


async def test_question_is_shown_without_answer_key(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")
    game_state = (await table.state("Bob"))["gameState"]

    question = game_state["currentQuestion"]
    assert set(question) == {"id", "textEn", "textHu", "category"}
    assert game_state["currentTurnPlayerNickname"] == "Alice"
    assert game_state["totalQuestions"] == 10


async def test_unrevealed_answer_is_redacted_for_everyone(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")
    submitted = await table.answer("Alice", await table.correct_answer())

    for viewer in ("Alice", "Bob"):
        state = await table.state(viewer)
        answer = state["gameState"]["recentAnswers"][0]
        assert answer["answerId"] == submitted["answerId"]
        assert answer["playerNickname"] == "Alice"
        assert answer["answerText"] is None
        assert answer["verdict"] == "hidden"
        assert answer["isCorrect"] is None
        assert answer["pointsEarned"] is None
        alice = next(player for player in state["players"] if player["nickname"] == "Alice")
        assert alice["score"] == 0
        assert state["gameState"]["turnPhase"] == "awaiting_challenge"
        assert state["gameState"]["challengeDeadline"] == submitted["challengeDeadline"]


async def test_revealed_answer_shows_verdict_and_points(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")
    submitted = await table.answer("Alice", await table.correct_answer())
    await table.challenge("Bob", submitted["answerId"])

    state = await table.state("Bob")
    answer = state["gameState"]["recentAnswers"][0]
    assert answer["verdict"] == "correct"
    assert answer["answerText"] == await table.correct_answer()
    assert answer["pointsEarned"] == 10
    assert answer["challengedBy"] == table.player_ids["Bob"]
    assert state["gameState"]["turnPhase"] == "resolved"
    assert (await table.player("Alice"))["score"] == 10


async def test_challenge_event_is_broadcast_until_advance(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob", "Carol")
    submitted = await table.answer("Alice", "xyz")
    await table.challenge("Bob", submitted["answerId"])

    event = (await table.state("Carol"))["gameState"]["lastChallengeEvent"]
    assert event["challengerName"] == "Bob"
    assert event["answererName"] == "Alice"
    assert event["answerText"] == "xyz"
    assert event["penaltyTarget"] == "answerer"

    await table.advance("Alice")
    assert (await table.state("Carol"))["gameState"]["lastChallengeEvent"] is None


async def test_caller_identity_in_snapshot(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob", start=False)

    bob_view = await table.state("Bob")
    stranger_view = await table.state()

    assert bob_view["currentPlayer"]["nickname"] == "Bob"
    assert [player["isCurrentPlayer"] for player in bob_view["players"]] == [False, True]
    assert stranger_view["currentPlayer"] is None
    assert stranger_view["gameState"] is None
    assert "finalScores" not in stranger_view
