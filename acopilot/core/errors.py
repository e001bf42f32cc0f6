"""Error taxonomy shared by the suggestion lifecycle and its callers."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of failure kinds surfaced by the lifecycle core."""

    MISSING_PRECONDITION = "MissingPrecondition"
    EMPTY_SKILL_SET = "EmptySkillSet"
    INVALID_CATEGORY = "InvalidCategory"
    GENERATOR_UNAVAILABLE = "GeneratorUnavailable"
    NOT_FOUND = "NotFound"
    INVALID_TRANSITION = "InvalidTransition"


class ActivityError(Exception):
    """Base class for every request-scoped lifecycle failure."""

    kind: ErrorKind = ErrorKind.INVALID_TRANSITION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict:
        return {"kind": self.kind.value, "error": self.message}


class MissingPreconditionError(ActivityError):
    """Raised when a student cannot request suggestions yet (no recent activity)."""

    kind = ErrorKind.MISSING_PRECONDITION


class EmptySkillSetError(ActivityError):
    kind = ErrorKind.EMPTY_SKILL_SET


class InvalidCategoryError(ActivityError):
    kind = ErrorKind.INVALID_CATEGORY

    def __init__(self, category: str, message: str | None = None) -> None:
        super().__init__(message or f"Unknown skill category '{category}'")
        self.category = category


class GeneratorUnavailableError(ActivityError):
    """Timeout, transport failure, or non-conforming output from the generator."""

    kind = ErrorKind.GENERATOR_UNAVAILABLE

    def __init__(self, message: str, *, raw_response: str | None = None) -> None:
        super().__init__(message)
        self.raw_response = raw_response


class NotFoundError(ActivityError):
    kind = ErrorKind.NOT_FOUND


class InvalidTransitionError(ActivityError):
    kind = ErrorKind.INVALID_TRANSITION


__all__ = [
    "ActivityError",
    "EmptySkillSetError",
    "ErrorKind",
    "GeneratorUnavailableError",
    "InvalidCategoryError",
    "InvalidTransitionError",
    "MissingPreconditionError",
    "NotFoundError",
]
