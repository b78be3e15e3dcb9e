"""Error kinds raised by the stores, the auth gate and the API handlers.

Every error carries the HTTP status it maps to, so the API layer renders
them with a single exception handler.
"""
from typing import Any, Dict, Optional


class VotingError(Exception):
    """Base class for all expected failures."""

    status_code: int = 500
    error: str = "InternalError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error, "message": self.message, "details": self.details}


class ValidationError(VotingError):
    """Malformed identifier or payload."""
    status_code = 400
    error = "ValidationError"


class Unauthorized(VotingError):
    """Missing, invalid or expired credential, or unknown voter."""
    status_code = 401
    error = "Unauthorized"


class NotFound(VotingError):
    """Unknown candidate id."""
    status_code = 404
    error = "NotFound"


class Conflict(VotingError):
    """Duplicate registration."""
    status_code = 409
    error = "Conflict"


class AlreadyVoted(VotingError):
    """The voter has already cast a vote."""
    status_code = 409
    error = "AlreadyVoted"


class InternalError(VotingError):
    """Unexpected collaborator failure. The message is safe to return."""
    status_code = 500
    error = "InternalError"
