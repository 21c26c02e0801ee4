"""Typed service errors surfaced to API callers.

Each error carries a user-facing message, a machine-readable code and the
HTTP status the API layer maps it to. main.py renders them in the response
envelope; routes never catch them.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from repositories.utils import RepositoryError

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


class ServiceError(Exception):
    """Base class for errors reported to the caller."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        self.code = code or self.default_code
        super().__init__(message)


class ValidationError(ServiceError):
    """Malformed or missing input."""

    status_code = 400
    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        *,
        details: list[dict[str, Any]] | None = None,
    ):
        self.details = details
        super().__init__(message, code)


class NotFoundError(ServiceError):
    """Referenced entity does not exist."""

    status_code = 404
    default_code = "NOT_FOUND"

    def __init__(self, resource: str, code: str | None = None):
        self.resource = resource
        super().__init__(f"{resource} not found", code)


class PermissionDeniedError(ServiceError):
    """Role or ownership check failed."""

    status_code = 403
    default_code = "ACCESS_DENIED"

    def __init__(self, message: str = "Access denied", code: str | None = None):
        super().__init__(message, code)


class InvalidStateError(ServiceError):
    """Requested transition is not legal from the current state."""

    status_code = 400
    default_code = "INVALID_STATE"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        *,
        current_state: str | None = None,
    ):
        self.current_state = current_state
        super().__init__(message, code)


class UnexpectedError(ServiceError):
    """Infrastructure failure. Never exposes internal detail."""

    status_code = 500
    default_code = "UNEXPECTED_ERROR"

    def __init__(self, code: str | None = None):
        super().__init__(GENERIC_ERROR_MESSAGE, code)


@contextmanager
def repository_errors(code: str) -> Iterator[None]:
    """Translate RepositoryError raised inside the block into UnexpectedError.

    Usage:
        with repository_errors("CREATE_FAILED"):
            booking = await repo.create(...)
    """
    try:
        yield
    except RepositoryError as e:
        raise UnexpectedError(code) from e


def require_reason(value: str | None, field: str = "reason") -> str:
    """Return the stripped reason or raise ValidationError when blank."""
    if value is None or not value.strip():
        raise ValidationError(
            f"A non-empty {field} is required",
            "REASON_REQUIRED",
            details=[{"field": field, "message": "must not be blank"}],
        )
    return value.strip()
