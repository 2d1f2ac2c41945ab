from __future__ import annotations

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

NOT_FOUND_MESSAGE = "session not found or expired"


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found_or_expired"
    PHASE_CONFLICT = "phase_conflict"
    GENERATION_FAILURE = "generation_failure"
    CAPACITY_EXCEEDED = "capacity_exceeded"


class DrawError(BaseModel):
    """A rejected action, returned as a value to the caller."""

    kind: ErrorKind
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


def not_found() -> DrawError:
    # Never say whether the session expired or never existed.
    return DrawError(kind=ErrorKind.NOT_FOUND, message=NOT_FOUND_MESSAGE)


def validation(message: str, **details: Any) -> DrawError:
    return DrawError(kind=ErrorKind.VALIDATION, message=message, details=details)


def phase_conflict(message: str, **details: Any) -> DrawError:
    return DrawError(kind=ErrorKind.PHASE_CONFLICT, message=message, details=details)


def generation_failure(message: str, **details: Any) -> DrawError:
    return DrawError(kind=ErrorKind.GENERATION_FAILURE, message=message, details=details)


class DrawRejected(Exception):
    """Raised inside a store mutator to abort the update without committing."""

    def __init__(self, error: DrawError):
        super().__init__(error.message)
        self.error = error


class DuplicateIdError(RuntimeError):
    pass


class GenerationError(RuntimeError):
    pass


class InvariantViolation(AssertionError):
    pass
