from __future__ import annotations

import re

import pytest
from fastapi.testclient import TestClient

from humbug.application import create_app
from humbug.rate_limit import MemoryRateLimiter
from humbug.runtime_constants import SESSION_COOKIE_NAME


@pytest.fixture
def app(store):
    return create_app(store=store, rate_limiter=MemoryRateLimiter(limit=1000, window_seconds=60))


@pytest.fixture
def host(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def guest(app):
    with TestClient(app) as client:
        yield client


def _create_and_join(host: TestClient, guest: TestClient) -> dict:
    created = host.post("/api/rooms?action=create", json={"maxPlayers": 4}).json()["data"]
    host.post("/api/rooms?action=join", json={"code": created["code"], "nickname": "Alice"})
    guest.post("/api/rooms?action=join", json={"code": created["code"], "nickname": "Bob"})
    return created


def test_create_issues_session_cookie_and_envelope(host):
    response = host.post("/api/rooms?action=create", json={"maxPlayers": 4})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert re.fullmatch(r"[A-Z0-9]{6}", body["data"]["code"])
    cookie = response.headers["set-cookie"]
    assert cookie.startswith(f"{SESSION_COOKIE_NAME}=")
    assert "HttpOnly" in cookie
    assert "Max-Age=604800" in cookie
    assert response.headers["x-ratelimit-limit"] == "1000"
    assert response.headers["x-ratelimit-remaining"] == "999"


def test_existing_session_is_not_reissued(host):
    host.post("/api/rooms?action=create", json={"maxPlayers": 4})
    response = host.post("/api/rooms?action=create", json={"maxPlayers": 4})

    assert "set-cookie" not in response.headers


def test_validation_errors_use_envelope(host):
    response = host.post("/api/rooms?action=create", json={"maxPlayers": 11})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "VALIDATION_ERROR"
    assert "maxPlayers" in body["error"]

    bad_code = host.post("/api/rooms?action=join", json={"code": "AB-123", "nickname": "Alice"})
    assert bad_code.status_code == 400

    bad_room = host.post("/api/rooms?action=leave", json={"roomId": "not-a-uuid"})
    assert bad_room.status_code == 400


def test_unknown_action_and_wrong_method(host):
    unknown = host.post("/api/rooms?action=explode", json={})
    assert unknown.status_code == 400
    assert "Supported" in unknown.json()["error"]

    wrong_method = host.get("/api/rooms?action=create")
    assert wrong_method.status_code == 405
    assert wrong_method.json()["success"] is False


def test_state_etag_round_trip(host, guest):
    created = _create_and_join(host, guest)

    first = guest.get("/api/rooms", params={"action": "state", "roomId": created["roomId"]})
    assert first.status_code == 200
    assert first.headers["etag"] == f'"{created["roomId"]}:2"'
    assert first.json()["data"]["currentPlayer"]["nickname"] == "Bob"

    cached = guest.get(
        "/api/rooms",
        params={"action": "state", "roomId": created["roomId"]},
        headers={"If-None-Match": first.headers["etag"]},
    )
    assert cached.status_code == 304
    assert cached.content == b""
    assert cached.headers["etag"] == first.headers["etag"]

    by_code = guest.get("/api/rooms", params={"action": "state", "code": created["code"]})
    assert by_code.json()["data"]["room"]["id"] == created["roomId"]


def test_state_of_missing_room(host):
    response = host.get(
        "/api/rooms",
        params={"action": "state", "roomId": "8f5b8e2c-0000-4000-8000-000000000000"},
    )

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


def test_full_turn_over_http(host, guest):
    created = _create_and_join(host, guest)
    room_id = created["roomId"]

    forbidden = guest.post("/api/rooms?action=start", json={"roomId": room_id})
    assert forbidden.status_code == 403

    started = host.post("/api/rooms?action=start", json={"roomId": room_id}).json()["data"]
    assert started["totalQuestions"] == 10

    late = TestClient(host.app).post("/api/rooms?action=join", json={"code": created["code"], "nickname": "Carol"})
    assert late.status_code == 409
    assert late.json()["code"] == "NOT_JOINABLE"

    answered = host.post("/api/rooms?action=answer", json={"roomId": room_id, "answer": "xyz"}).json()["data"]
    assert answered["correct"] is False

    self_call = host.post("/api/rooms?action=humbug", json={"roomId": room_id, "answerId": answered["answerId"]})
    assert self_call.status_code == 403
    assert self_call.json()["code"] == "SELF_CHALLENGE"

    called = guest.post("/api/rooms?action=humbug", json={"roomId": room_id, "answerId": answered["answerId"]})
    assert called.status_code == 200
    assert called.json()["data"]["penaltyTarget"] == "answerer"

    again = guest.post("/api/rooms?action=challenge", json={"roomId": room_id, "answerId": answered["answerId"]})
    assert again.status_code == 409
    assert again.json()["code"] == "ALREADY_RESOLVED"

    advanced = host.post("/api/rooms?action=next", json={"roomId": room_id}).json()["data"]
    assert advanced["nextQuestionIndex"] == 1


def test_available_sets(host):
    response = host.get("/api/rooms?action=available-sets")

    sets = response.json()["data"]
    assert [item["slug"] for item in sets] == ["main", "tiny"]
    assert [item["playable"] for item in sets] == [True, False]


def test_rate_limit_ceiling(store):
    app = create_app(store=store, rate_limiter=MemoryRateLimiter(limit=2, window_seconds=60))
    with TestClient(app) as client:
        for _ in range(2):
            assert client.get("/api/rooms?action=available-sets").status_code == 200
        blocked = client.get("/api/rooms?action=available-sets")

    assert blocked.status_code == 429
    assert blocked.json()["code"] == "RATE_LIMITED"
    assert blocked.headers["x-ratelimit-remaining"] == "0"
    assert "retry-after" in blocked.headers


def test_unconfigured_store_answers_503():
    app = create_app(rate_limiter=MemoryRateLimiter(limit=10, window_seconds=60))
    client = TestClient(app)

    response = client.get("/api/rooms?action=available-sets")

    assert response.status_code == 503
    assert response.json()["code"] == "UNCONFIGURED"


def test_unexpected_errors_become_generic_500(app, host):
    async def broken(*args, **kwargs):
        raise RuntimeError("boom")

    app.state.runtime.create_room = broken
    response = host.post("/api/rooms?action=create", json={"maxPlayers": 4})

    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"}


def test_health_reports_store(host):
    body = host.get("/api/health").json()

    assert body["ok"] is True
    assert body["database"] == "up"
    assert body["activeRooms"] == 0
    assert body["rateLimiter"] == "MemoryRateLimiter"
