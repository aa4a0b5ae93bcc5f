"""Error kinds raised by the tournament core.

Every service raises one of these before it mutates anything, so the
surrounding session can roll back cleanly. The web layer maps ``kind`` and
``http_status`` straight onto the response.
"""

from __future__ import annotations


class EfhubError(Exception):
    """Base class for all domain errors."""

    kind = "error"
    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class ValidationError(EfhubError):
    """Malformed or out-of-range input."""

    kind = "validation_error"
    http_status = 400


class NotFoundError(EfhubError):
    """A referenced tournament, match, player or payment does not exist."""

    kind = "not_found"
    http_status = 404


class ForbiddenError(EfhubError):
    """The actor lacks the relationship or role the action needs."""

    kind = "forbidden"
    http_status = 403


class ConflictError(EfhubError):
    """The action is invalid for the entity's current state."""

    kind = "conflict"
    http_status = 409


class PreconditionError(EfhubError):
    """A required earlier step has not happened yet."""

    kind = "precondition_failed"
    http_status = 412


class ConcurrencyError(EfhubError):
    """A write lost a race (or the store timed out); retry the whole operation."""

    kind = "concurrency_conflict"
    http_status = 503
