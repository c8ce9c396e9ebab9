"""Exception hierarchy shared by the services and the web layer."""

from __future__ import annotations


class MarkNoteError(Exception):
    """Base class for failures that map onto an HTTP status."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class BadRequestError(MarkNoteError):
    status_code = 400
    default_message = "Missing required parameters"


class NotFoundError(MarkNoteError):
    status_code = 404
    default_message = "Not found"


class ConflictError(MarkNoteError):
    """Raised when a resource already exists.

    Answers 400 rather than 409 because existing clients only branch on 400.
    """

    status_code = 400
    default_message = "Already exists"


class UnauthorizedError(MarkNoteError):
    status_code = 401
    default_message = "Invalid username or password"


class InternalError(MarkNoteError):
    status_code = 500


__all__ = [
    "BadRequestError",
    "ConflictError",
    "InternalError",
    "MarkNoteError",
    "NotFoundError",
    "UnauthorizedError",
]
