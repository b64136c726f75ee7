from __future__ import annotations


class RoomError(Exception):
    """Expected, user-facing failure of a room action.

    Handlers report these in the response envelope; they never reach the
    generic 500 path.
    """

    code = "ROOM_ERROR"
    status_code = 400
    default_message = "Room action failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFound(RoomError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found"


class InvalidState(RoomError):
    code = "INVALID_STATE"
    status_code = 409
    default_message = "Action is not valid in the current state"


class NotJoinable(InvalidState):
    code = "NOT_JOINABLE"
    default_message = "Room is not joinable"


class Forbidden(RoomError):
    code = "FORBIDDEN"
    status_code = 403
    default_message = "Not allowed"


class SelfChallenge(Forbidden):
    code = "SELF_CHALLENGE"
    default_message = "You cannot HUMBUG your own answer"


class ValidationFailed(RoomError):
    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid request"


class InsufficientPlayers(RoomError):
    code = "INSUFFICIENT_PLAYERS"
    status_code = 400
    default_message = "Need at least 2 players to start"


class InsufficientContent(RoomError):
    code = "INSUFFICIENT_CONTENT"
    status_code = 400
    default_message = "Not enough questions in set"


class WindowExpired(RoomError):
    code = "WINDOW_EXPIRED"
    status_code = 409
    default_message = "HUMBUG timer expired"


class AlreadyResolved(RoomError):
    code = "ALREADY_RESOLVED"
    status_code = 409
    default_message = "This answer has already been revealed"


class RateLimited(RoomError):
    code = "RATE_LIMITED"
    status_code = 429
    default_message = "Rate limit exceeded"


class Unconfigured(RoomError):
    code = "UNCONFIGURED"
    status_code = 503
    default_message = "Storage is not available"


class RoomCodeExhausted(RuntimeError):
    pass
