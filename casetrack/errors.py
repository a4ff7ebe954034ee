"""
Error kinds and operation results for the CaseTrack core.

Services raise CaseTrackError subclasses internally. Every public
operation catches them at its boundary, rolls back its unit of work
and returns an OperationResult instead of raising through the caller.
"""

import uuid
from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Any, Generic, Optional, Type, TypeVar

T = TypeVar("T")


class ErrorKind(str, PyEnum):
    """Failure categories exposed to callers"""
    NOT_FOUND = "NotFound"
    UNAUTHORIZED = "Unauthorized"
    VALIDATION_ERROR = "ValidationError"
    INVALID_STATE = "InvalidState"


class CaseTrackError(Exception):
    """Base exception for domain errors."""
    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.message = message
        self.field = field


class NotFoundError(CaseTrackError):
    """Referenced file, movement, deadline, alert or user is absent."""
    kind = ErrorKind.NOT_FOUND


class UnauthorizedError(CaseTrackError):
    """Actor lacks the specific right for the operation."""
    kind = ErrorKind.UNAUTHORIZED


class ValidationError(CaseTrackError):
    """Malformed or missing input."""
    kind = ErrorKind.VALIDATION_ERROR


class InvalidStateError(CaseTrackError):
    """Operation not allowed in the record's current state."""
    kind = ErrorKind.INVALID_STATE


@dataclass
class OperationResult(Generic[T]):
    """
    Success/failure wrapper returned by every public core operation.

    Exactly one of value (on success) or error_kind (on failure) is
    meaningful; message carries the human-readable failure reason.
    """
    ok: bool
    value: Optional[T] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, value: T) -> 'OperationResult[T]':
        return cls(ok=True, value=value)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> 'OperationResult[T]':
        return cls(ok=False, error_kind=kind, message=message)

    @classmethod
    def from_error(cls, error: CaseTrackError) -> 'OperationResult[T]':
        return cls.fail(error.kind, error.message)

    def unwrap(self) -> T:
        """Return the value or raise the matching CaseTrackError."""
        if self.ok:
            return self.value
        raise ERROR_CLASSES[self.error_kind](self.message)


ERROR_CLASSES = {
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.UNAUTHORIZED: UnauthorizedError,
    ErrorKind.VALIDATION_ERROR: ValidationError,
    ErrorKind.INVALID_STATE: InvalidStateError,
}


E = TypeVar("E", bound=PyEnum)


def coerce_enum(enum_cls: Type[E], value: Any, label: str) -> E:
    """
    Accept an enum member or its value; anything else is a ValidationError.

    Args:
        enum_cls: Target enum
        value: Member or raw value (e.g. "Filing")
        label: Human name used in the error message
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {label}: {value!r}", field=label)


def as_uuid(value: Any, label: str) -> uuid.UUID:
    """Parse an identifier into a UUID or raise ValidationError."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label} id: {value!r}", field=f"{label}_id")

