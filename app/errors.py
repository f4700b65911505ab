"""
Scheduling exceptions.

Every failure the engine or the apply path can raise derives from
SchedulingError so callers can catch the family at once or a single kind.
Integrity warnings are not exceptions; they travel as data in the grid.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SchedulingError(Exception):
    """
    Base class for scheduling failures.

    Attributes:
        message: Human-readable description.
        code: Stable machine-readable identifier.
        details: Extra context (dates, ids) for the caller.
    """

    default_code = "SCHEDULING_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "exception_type": self.__class__.__name__,
        }


class NotFoundError(SchedulingError, LookupError):
    """A referenced employee or record does not exist."""

    default_code = "NOT_FOUND"


class InvalidInputError(SchedulingError, ValueError):
    """Malformed date, weekday, team, shift or scope; rejected before computing."""

    default_code = "INVALID_INPUT"


class StaleSuggestionConflict(SchedulingError):
    """A suggestion no longer matches the current schedule state."""

    default_code = "STALE_SUGGESTION"


class ScheduleLockedError(SchedulingError):
    """A write touched a locked week or day."""

    default_code = "WEEK_LOCKED"

    def __init__(
        self,
        message: str,
        *,
        code: str = "WEEK_LOCKED",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if code not in {"WEEK_LOCKED", "DAY_LOCKED"}:
            raise ValueError(f"Unsupported lock code '{code}'.")
        super().__init__(message, code=code, details=details)
