"""
Error taxonomy for the Tabulary runtime.

Every error carries the HTTP status and type tag it is rendered with by the
exception handlers. Storage-level failures are raised by the repository and
converted at the handler boundary.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorType(StrEnum):
    """Type tags used in error envelopes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTHENTICATION_ERROR = "AUTHENTICATION_ERROR"
    AUTHORIZATION_ERROR = "AUTHORIZATION_ERROR"
    NOT_FOUND_ERROR = "NOT_FOUND_ERROR"
    CONFLICT_ERROR = "CONFLICT_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class TabularyError(Exception):
    """Base exception for all Tabulary runtime errors."""

    status_code: int = 500
    error_type: ErrorType = ErrorType.INTERNAL_SERVER_ERROR
    default_message: str = "Internal server error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Render the ``error`` member of the response envelope."""
        body: dict[str, Any] = {"message": self.message, "type": self.error_type.value}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(TabularyError):
    """Malformed or missing input. ``details`` maps field -> messages."""

    status_code = 400
    error_type = ErrorType.VALIDATION_ERROR
    default_message = "Validation failed"


class AuthenticationError(TabularyError):
    """Missing, invalid or expired principal."""

    status_code = 401
    error_type = ErrorType.AUTHENTICATION_ERROR
    default_message = "Authentication required"


class AuthorizationError(TabularyError):
    """Valid principal without the permission or a failed row condition."""

    status_code = 403
    error_type = ErrorType.AUTHORIZATION_ERROR
    default_message = "Insufficient permissions"


class NotFoundError(TabularyError):
    """Unknown table, record or relation."""

    status_code = 404
    error_type = ErrorType.NOT_FOUND_ERROR
    default_message = "Resource not found"


class ConflictError(TabularyError):
    """Duplicate value for a unique constraint."""

    status_code = 409
    error_type = ErrorType.CONFLICT_ERROR
    default_message = "Resource already exists"


class StorageError(TabularyError):
    """Record storage failure. The message is logged, never returned."""

    status_code = 500
    error_type = ErrorType.DATABASE_ERROR
    default_message = "Database error occurred"


class ConstraintViolationError(StorageError):
    """Raised when a database constraint (unique, FK, not null) is violated."""

    status_code = 400
    error_type = ErrorType.VALIDATION_ERROR

    def __init__(
        self,
        message: str,
        field: str | None = None,
        constraint_type: str = "integrity",
    ):
        self.field = field
        self.constraint_type = constraint_type  # "unique" | "foreign_key" | "not_null"
        details = {field: [message]} if field else None
        super().__init__(message, details)
        if constraint_type == "unique":
            self.status_code = ConflictError.status_code
            self.error_type = ConflictError.error_type


def validation_details(errors: list[dict[str, Any]]) -> dict[str, list[str]]:
    """
    Collapse Pydantic ``errors()`` into a ``{field: [messages]}`` map.

    Errors without a location are reported under ``_root``.
    """
    details: dict[str, list[str]] = {}
    for err in errors:
        loc = err.get("loc") or ()
        key = ".".join(str(part) for part in loc) if loc else "_root"
        details.setdefault(key, []).append(str(err.get("msg", "Invalid value")))
    return details
