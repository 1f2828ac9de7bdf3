"""
Error taxonomy shared by the state engine, the dispatcher and the HTTP routes.

Every error carries a wire ``code``, an HTTP ``status`` and whether the client
may simply retry the same command.
"""
from __future__ import annotations


class PokerError(Exception):
    """Base class for all user-visible errors."""

    code = "ERROR"
    status = 400
    retryable = False
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code, "retryable": self.retryable}


# ============ NotFound ============

class NotFound(PokerError):
    code = "NOT_FOUND"
    status = 404
    default_message = "Not found"


class RoomNotFound(NotFound):
    default_message = "Room not found"

    def __init__(self, room_id: str | None = None):
        self.room_id = room_id
        super().__init__()


class IssueNotFound(NotFound):
    default_message = "Issue not found"

    def __init__(self, issue_id: str | None = None):
        self.issue_id = issue_id
        super().__init__()


class ParticipantNotFound(NotFound):
    default_message = "Participant not found"

    def __init__(self, user_id: str | None = None):
        self.user_id = user_id
        super().__init__()


# ============ Forbidden / InvalidInput ============

class Forbidden(PokerError):
    code = "FORBIDDEN"
    status = 403
    default_message = "Not allowed"


class InvalidInput(PokerError):
    code = "INVALID_INPUT"
    status = 400
    default_message = "Invalid input"


class MaxRoomsExceeded(PokerError):
    code = "MAX_ROOMS_EXCEEDED"
    status = 400

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Maximum {limit} active rooms allowed")


class AuthenticationRequired(PokerError):
    code = "AUTH_REQUIRED"
    status = 401
    default_message = "Authentication required"


# ============ Store ============

class StoreUnavailable(PokerError):
    """Persistence failed or timed out; nothing was written."""

    code = "STORE_UNAVAILABLE"
    status = 503
    retryable = True
    default_message = "Storage temporarily unavailable, please retry"


class RoomBusy(StoreUnavailable):
    code = "ROOM_BUSY"
    default_message = "Room is busy, please retry"
