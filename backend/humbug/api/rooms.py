from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable

import asyncpg
from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from humbug.errors import RateLimited, RoomError, Unconfigured, ValidationFailed
from humbug.runtime import HumbugRuntime
from humbug.schemas.rooms import (
    ChallengeRequest,
    CreateRoomRequest,
    JoinRoomRequest,
    RoomActionRequest,
    RoomStateQuery,
    StartGameRequest,
    SubmitAnswerRequest,
)
from humbug.session_identity import SessionIdentity, attach_session_cookie, resolve_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])

_STORAGE_ERRORS = (
    OSError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
)

Handler = Callable[[HumbugRuntime, SessionIdentity, Request], Awaitable[Response | dict[str, Any] | list[Any]]]


def _envelope(data: Any = None, *, error: RoomError | None = None) -> dict[str, Any]:
    if error is None:
        return {"success": True, "data": data}
    return {"success": False, "error": error.message, "code": error.code}


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",", 1)[0].strip()
    return request.client.host if request.client else "unknown"


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__")
    message = str(first.get("msg") or "Invalid request")
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    return f"{location}: {message}" if location else message


async def _read_body(request: Request, model: type[BaseModel]) -> Any:
    raw = await request.body()
    try:
        payload = json.loads(raw) if raw else {}
    except ValueError as exc:
        raise ValidationFailed("Request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationFailed("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailed(_validation_message(exc)) from exc


async def _create(runtime: HumbugRuntime, identity: SessionIdentity, request: Request) -> dict[str, Any]:
    body = await _read_body(request, CreateRoomRequest)
    return await runtime.create_room(identity.token, max_players=body.maxPlayers, question_set_id=body.questionSetId)


async def _join(runtime: HumbugRuntime, identity: SessionIdentity, request: Request) -> dict[str, Any]:
    body = await _read_body(request, JoinRoomRequest)
    return await runtime.join_room(identity.token, code=body.code, nickname=body.nickname)


async def _leave(runtime: HumbugRuntime, identity: SessionIdentity, request: Request) -> dict[str, Any]:
    body = await _read_body(request, RoomActionRequest)
    return await runtime.leave_room(identity.token, room_id=body.room_id)


async def _start(runtime: HumbugRuntime, identity: SessionIdentity, request: Request) -> dict[str, Any]:
    body = await _read_body(request, StartGameRequest)
    return await runtime.start_game(identity.token, room_id=body.room_id, question_set_id=body.questionSetId)


async def _answer(runtime: HumbugRuntime, identity: SessionIdentity, request: Request) -> dict[str, Any]:
    body = await _read_body(request, SubmitAnswerRequest)
    return await runtime.submit_answer(identity.token, room_id=body.room_id, answer=body.answer)


async def _challenge(runtime: HumbugRuntime, identity: SessionIdentity, request: Request) -> dict[str, Any]:
    body = await _read_body(request, ChallengeRequest)
    return await runtime.challenge(identity.token, room_id=body.room_id, answer_id=body.answerId)


async def _next(runtime: HumbugRuntime, identity: SessionIdentity, request: Request) -> dict[str, Any]:
    body = await _read_body(request, RoomActionRequest)
    return await runtime.advance(identity.token, room_id=body.room_id)


async def _state(runtime: HumbugRuntime, identity: SessionIdentity, request: Request) -> Response:
    try:
        query = RoomStateQuery.model_validate(
            {key: value for key, value in request.query_params.items() if key in {"roomId", "code"}}
        )
    except ValidationError as exc:
        raise ValidationFailed(_validation_message(exc)) from exc

    result = await runtime.get_state(
        identity.token,
        room_id=str(query.roomId) if query.roomId else None,
        code=query.code,
        if_none_match=request.headers.get("if-none-match"),
    )
    headers = {"ETag": result.etag, "Cache-Control": "no-cache, must-revalidate"}
    if result.unchanged:
        return Response(status_code=304, headers=headers)
    return JSONResponse(_envelope(result.payload), headers=headers)


async def _available_sets(runtime: HumbugRuntime, identity: SessionIdentity, request: Request) -> list[Any]:
    return await runtime.available_sets()


ACTIONS: dict[str, tuple[str, Handler]] = {
    "create": ("POST", _create),
    "join": ("POST", _join),
    "leave": ("POST", _leave),
    "start": ("POST", _start),
    "state": ("GET", _state),
    "answer": ("POST", _answer),
    "challenge": ("POST", _challenge),
    "humbug": ("POST", _challenge),
    "next": ("POST", _next),
    "available-sets": ("GET", _available_sets),
}


def _error_response(error: RoomError, headers: dict[str, str]) -> JSONResponse:
    return JSONResponse(_envelope(error=error), status_code=error.status_code, headers=headers)


@router.api_route("/api/rooms", methods=["GET", "POST"])
async def rooms_action(request: Request, action: str = Query(default="")) -> Response:
    headers: dict[str, str] = {}
    limiter = request.app.state.rate_limiter
    decision = await limiter.hit(_client_key(request))
    headers.update(decision.headers())
    if not decision.allowed:
        headers["Retry-After"] = str(max(1, int(decision.reset_after)))
        return _error_response(RateLimited("Too many requests, slow down"), headers)

    route = ACTIONS.get(action)
    if route is None:
        supported = ", ".join(ACTIONS)
        return _error_response(ValidationFailed(f"Invalid action: {action or '-'}. Supported: {supported}"), headers)

    method, handler = route
    if request.method != method:
        return JSONResponse(
            {"success": False, "error": "Method not allowed", "code": "METHOD_NOT_ALLOWED"},
            status_code=405,
            headers={**headers, "Allow": method},
        )

    identity = resolve_session(request)
    runtime: HumbugRuntime | None = request.app.state.runtime
    try:
        if runtime is None:
            raise Unconfigured()
        result = await handler(runtime, identity, request)
    except RoomError as exc:
        response: Response = _error_response(exc, headers)
    except _STORAGE_ERRORS:
        logger.exception("Room store unavailable action=%s", action)
        response = _error_response(Unconfigured(), headers)
    except Exception:
        logger.exception("Unhandled error in room action=%s", action)
        response = JSONResponse(
            {"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"},
            status_code=500,
            headers=headers,
        )
    else:
        if isinstance(result, Response):
            response = result
            for key, value in headers.items():
                response.headers[key] = value
        else:
            response = JSONResponse(_envelope(result), headers=headers)

    attach_session_cookie(response, identity)
    return response
