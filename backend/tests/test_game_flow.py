from __future__ import annotations

import asyncio

import pytest

from humbug.errors import (
    AlreadyResolved,
    Forbidden,
    InsufficientContent,
    InsufficientPlayers,
    InvalidState,
    NotFound,
    SelfChallenge,
    WindowExpired,
)


async def test_start_deals_ten_questions_and_first_turn_to_host(runtime, store, seat_players):
    table = await seat_players(runtime, "Alice", "Bob", start=False)

    started = await runtime.start_game("alice-session", room_id=table.room_id)

    assert started == {"started": True, "totalQuestions": 10, "firstPlayerId": table.player_ids["Alice"]}
    async with store.snapshot() as tx:
        game = await tx.get_game(table.room_id)
    assert len(set(game.question_ids)) == 10
    assert game.current_question_id == game.question_ids[game.current_question_index]
    assert game.turn_order == [table.player_ids["Alice"], table.player_ids["Bob"]]
    state = await table.state("Bob")
    assert state["room"]["state"] == "playing"
    assert state["gameState"]["roundNumber"] == 1
    assert state["gameState"]["turnPhase"] == "awaiting_answer"


async def test_start_preconditions(runtime, seat_players):
    solo = await seat_players(runtime, "Alice", start=False)
    with pytest.raises(InsufficientPlayers):
        await runtime.start_game("alice-session", room_id=solo.room_id)

    table = await seat_players(runtime, "Carol", "Dave", start=False)
    with pytest.raises(Forbidden):
        await runtime.start_game("dave-session", room_id=table.room_id)
    with pytest.raises(InsufficientContent):
        await runtime.start_game("carol-session", room_id=table.room_id, question_set_id=2)
    with pytest.raises(NotFound):
        await runtime.start_game("carol-session", room_id=table.room_id, question_set_id=42)

    await runtime.start_game("carol-session", room_id=table.room_id)
    with pytest.raises(InvalidState):
        await runtime.start_game("carol-session", room_id=table.room_id)


async def test_wrong_answer_challenged_costs_the_answerer_a_life(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")

    submitted = await table.answer("Alice", "xyz")
    assert submitted["correct"] is False
    assert submitted["pointsEarned"] == 0
    assert submitted["awaitingChallenge"] is True

    result = await table.challenge("Bob", submitted["answerId"])

    assert result["answerWasCorrect"] is False
    assert result["penaltyTarget"] == "answerer"
    assert result["eliminated"] is False
    assert result["livesRemaining"] == 2
    assert (await table.player("Alice"))["lives"] == 2
    assert (await table.player("Bob"))["lives"] == 3


async def test_correct_answer_challenged_costs_the_challenger_a_life(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")

    submitted = await table.answer("Alice", (await table.correct_answer()).upper())
    assert submitted["correct"] is True
    assert submitted["pointsEarned"] == 10

    result = await table.challenge("Bob", submitted["answerId"])

    assert result["answerWasCorrect"] is True
    assert result["penaltyTarget"] == "challenger"
    assert result["livesRemaining"] == 2
    assert (await table.player("Bob"))["lives"] == 2
    alice = await table.player("Alice")
    assert alice["score"] == 10
    assert alice["lives"] == 3


async def test_challenge_guards(runtime, seat_players, clock):
    table = await seat_players(runtime, "Alice", "Bob", "Carol")
    submitted = await table.answer("Alice", "xyz")

    with pytest.raises(SelfChallenge):
        await table.challenge("Alice", submitted["answerId"])
    with pytest.raises(NotFound):
        await table.challenge("Bob", submitted["answerId"] + 1000)
    with pytest.raises(NotFound):
        await runtime.challenge("mallory-session", room_id=table.room_id, answer_id=submitted["answerId"])

    await table.challenge("Bob", submitted["answerId"])
    with pytest.raises(AlreadyResolved):
        await table.challenge("Carol", submitted["answerId"])


async def test_challenge_after_window_expires(runtime, seat_players, clock):
    table = await seat_players(runtime, "Alice", "Bob")
    submitted = await table.answer("Alice", "xyz")

    clock.advance(30)
    assert (await table.state())["gameState"]["turnPhase"] == "awaiting_challenge"
    clock.advance(1)

    with pytest.raises(WindowExpired):
        await table.challenge("Bob", submitted["answerId"])


async def test_answer_guards(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")

    with pytest.raises(Forbidden):
        await table.answer("Bob", "xyz")
    with pytest.raises(NotFound):
        await runtime.submit_answer("mallory-session", room_id=table.room_id, answer="xyz")

    await table.answer("Alice", "xyz")
    with pytest.raises(InvalidState):
        await table.answer("Alice", "again")


async def test_answer_before_start_is_invalid(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob", start=False)

    with pytest.raises(InvalidState):
        await table.answer("Alice", "xyz")


async def test_advance_rotates_turns_and_counts_rounds(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")

    with pytest.raises(Forbidden):
        await table.advance("Bob")

    first = await table.advance("Alice")
    assert first == {"nextQuestionIndex": 1, "nextPlayerId": table.player_ids["Bob"], "roundNumber": 1}

    second = await table.advance("Alice")
    assert second == {"nextQuestionIndex": 2, "nextPlayerId": table.player_ids["Alice"], "roundNumber": 2}


async def test_unchallenged_wrong_answer_costs_a_life_on_advance(runtime, seat_players, clock):
    table = await seat_players(runtime, "Alice", "Bob")
    submitted = await table.answer("Alice", "xyz")
    clock.advance(31)

    await table.advance("Alice")

    assert (await table.player("Alice"))["lives"] == 2
    answers = (await table.state())["gameState"]["recentAnswers"]
    assert answers[0]["answerId"] == submitted["answerId"]
    assert answers[0]["verdict"] == "incorrect"


async def test_unchallenged_correct_answer_keeps_points(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")
    await table.answer("Alice", await table.correct_answer())

    await table.advance("Alice")

    alice = await table.player("Alice")
    assert alice["score"] == 10
    assert alice["lives"] == 3


async def test_elimination_of_the_only_opponent_ends_the_game(make_runtime, seat_players):
    runtime = make_runtime(starting_lives=1)
    table = await seat_players(runtime, "Alice", "Bob")
    submitted = await table.answer("Alice", "xyz")

    result = await table.challenge("Bob", submitted["answerId"])
    assert result["eliminated"] is True
    assert result["livesRemaining"] == 0

    over = await table.advance("Alice")

    assert over["gameOver"] is True
    assert over["reason"] == "all_eliminated"
    assert [entry["nickname"] for entry in over["finalScores"]] == ["Bob", "Alice"]
    state = await table.state()
    assert state["room"]["state"] == "finished"
    assert state["finalScores"][0]["nickname"] == "Bob"


async def test_rotation_skips_eliminated_players(make_runtime, seat_players):
    runtime = make_runtime(starting_lives=1)
    table = await seat_players(runtime, "Alice", "Bob", "Carol")
    submitted = await table.answer("Alice", await table.correct_answer())

    result = await table.challenge("Bob", submitted["answerId"])
    assert result["penaltyTarget"] == "challenger"
    assert result["eliminated"] is True

    advanced = await table.advance("Alice")
    assert advanced["nextPlayerId"] == table.player_ids["Carol"]

    advanced = await table.advance("Alice")
    assert advanced["nextPlayerId"] == table.player_ids["Alice"]
    assert advanced["roundNumber"] == 2


async def test_eliminated_player_cannot_challenge(make_runtime, seat_players):
    runtime = make_runtime(starting_lives=1)
    table = await seat_players(runtime, "Alice", "Bob", "Carol")
    submitted = await table.answer("Alice", await table.correct_answer())
    await table.challenge("Bob", submitted["answerId"])
    await table.advance("Alice")

    carol_answer = await table.answer("Carol", "xyz")
    with pytest.raises(Forbidden):
        await table.challenge("Bob", carol_answer["answerId"])


async def test_game_completes_after_last_question(make_runtime, seat_players):
    runtime = make_runtime(questions_per_game=2)
    table = await seat_players(runtime, "Alice", "Bob")
    await table.answer("Alice", await table.correct_answer())

    await table.advance("Alice")
    over = await table.advance("Alice")

    assert over["gameOver"] is True
    assert over["reason"] == "completed"
    assert over["finalScores"][0]["nickname"] == "Alice"
    assert over["finalScores"][0]["score"] == 10
    with pytest.raises(InvalidState):
        await table.advance("Alice")


async def test_state_version_increases_on_every_mutation(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob", "Carol")
    versions = [(await table.state())["room"]["stateVersion"]]

    submitted = await table.answer("Alice", "xyz")
    versions.append((await table.state())["room"]["stateVersion"])
    await table.challenge("Bob", submitted["answerId"])
    versions.append((await table.state())["room"]["stateVersion"])
    await table.advance("Alice")
    versions.append((await table.state())["room"]["stateVersion"])
    await runtime.leave_room("carol-session", room_id=table.room_id)
    versions.append((await table.state())["room"]["stateVersion"])

    assert versions == sorted(set(versions))
    assert len(versions) == 5


async def test_failed_action_leaves_version_untouched(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")
    before = (await table.state())["room"]["stateVersion"]

    with pytest.raises(Forbidden):
        await table.answer("Bob", "xyz")

    assert (await table.state())["room"]["stateVersion"] == before


async def test_racing_challenges_resolve_once(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob", "Carol")
    submitted = await table.answer("Alice", "xyz")
    before = (await table.state())["room"]["stateVersion"]

    results = await asyncio.gather(
        table.challenge("Bob", submitted["answerId"]),
        table.challenge("Carol", submitted["answerId"]),
        return_exceptions=True,
    )

    winners = [result for result in results if isinstance(result, dict)]
    losers = [result for result in results if isinstance(result, Exception)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert isinstance(losers[0], AlreadyResolved)
    assert (await table.player("Alice"))["lives"] == 2
    assert (await table.player("Bob"))["lives"] == 3
    assert (await table.player("Carol"))["lives"] == 3
    assert (await table.state())["room"]["stateVersion"] == before + 1


async def test_racing_answers_record_one(runtime, store, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")
    correct = await table.correct_answer()

    results = await asyncio.gather(
        table.answer("Alice", correct),
        table.answer("Alice", "xyz"),
        return_exceptions=True,
    )

    assert sum(isinstance(result, dict) for result in results) == 1
    assert sum(isinstance(result, InvalidState) for result in results) == 1
    async with store.snapshot() as tx:
        game = await tx.get_game(table.room_id)
        answers = await tx.list_answers(game.id, question_id=game.current_question_id)
    assert len(answers) == 1


async def test_challenge_racing_advance_charges_one_life(runtime, seat_players):
    table = await seat_players(runtime, "Alice", "Bob")
    submitted = await table.answer("Alice", "xyz")

    challenged, advanced = await asyncio.gather(
        table.challenge("Bob", submitted["answerId"]),
        table.advance("Alice"),
        return_exceptions=True,
    )

    assert advanced["nextQuestionIndex"] == 1
    if isinstance(challenged, Exception):
        assert isinstance(challenged, AlreadyResolved)
    else:
        assert challenged["penaltyTarget"] == "answerer"
    assert (await table.player("Alice"))["lives"] == 2
    assert (await table.player("Bob"))["lives"] == 3
