from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request, Response

from .config import settings
from .runtime_constants import SESSION_COOKIE_NAME, SESSION_HEADER_NAME
from .runtime_utils import generate_session_token, normalize_session_token


@dataclass(frozen=True)
class SessionIdentity:
    token: str
    issued: bool


def read_session_token(request: Request) -> str | None:
    token = normalize_session_token(request.cookies.get(SESSION_COOKIE_NAME))
    if token is None:
        token = normalize_session_token(request.headers.get(SESSION_HEADER_NAME))
    return token


def resolve_session(request: Request) -> SessionIdentity:
    """Caller identity, minting a fresh token on first contact."""
    token = read_session_token(request)
    if token is not None:
        return SessionIdentity(token=token, issued=False)
    return SessionIdentity(token=generate_session_token(), issued=True)


def attach_session_cookie(response: Response, identity: SessionIdentity) -> None:
    if not identity.issued:
        return
    response.set_cookie(
        SESSION_COOKIE_NAME,
        identity.token,
        max_age=settings.session_max_age_seconds,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
        path="/",
    )
