"""Error taxonomy shared by the session core and the API layer."""

from __future__ import annotations

from typing import Any


class QuizSessionError(Exception):
    """Base class for expected, caller-facing failures."""

    status_code: int = 500
    error_type: str = "session_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnauthorizedError(QuizSessionError):
    """No caller identity where one is required."""

    status_code = 401
    error_type = "unauthorized"


class ForbiddenError(QuizSessionError):
    """Caller is known but may not perform the action."""

    status_code = 403
    error_type = "forbidden"


class NotFoundError(QuizSessionError):
    status_code = 404
    error_type = "not_found"


class ConflictError(QuizSessionError):
    """Action collides with current state (duplicate answer, illegal transition)."""

    status_code = 409
    error_type = "conflict"


class GoneError(QuizSessionError):
    """Action attempted against a finished session."""

    status_code = 410
    error_type = "gone"


class ValidationError(QuizSessionError):
    """Malformed payload; ``details`` carries field-level information."""

    status_code = 422
    error_type = "validation_error"

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.details = details or []

    @classmethod
    def for_field(cls, field_name: str, message: str) -> "ValidationError":
        return cls(message, details=[{"loc": [field_name], "msg": message}])


class ResourceExhaustedError(QuizSessionError):
    """A bounded retry budget ran out (e.g. join-code generation)."""

    status_code = 503
    error_type = "resource_exhausted"
