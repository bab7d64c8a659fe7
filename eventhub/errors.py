"""Error taxonomy surfaced by the lifecycle services."""
from __future__ import annotations


class EventHubError(Exception):
    """Base class for errors reported to callers of the service layer."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(EventHubError):
    status_code = 404


class ForbiddenError(EventHubError):
    status_code = 403


class ConflictError(EventHubError):
    status_code = 409


class BadRequestError(EventHubError):
    status_code = 400


class InvalidCursorError(BadRequestError):
    """Raised when a pagination cursor cannot be decoded."""


class InternalError(EventHubError):
    status_code = 500


__all__ = [
    "EventHubError",
    "NotFoundError",
    "ForbiddenError",
    "ConflictError",
    "BadRequestError",
    "InvalidCursorError",
    "InternalError",
]
