from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from errors import InvalidInputError


class ShiftKind(str, Enum):
    MORNING = "MORNING"
    EVENING = "EVENING"
    NONE = "NONE"
    COVER_EXT_AM = "COVER_EXT_AM"
    COVER_EXT_PM = "COVER_EXT_PM"


class Availability(str, Enum):
    LEAVE = "LEAVE"
    OFF = "OFF"
    ABSENT = "ABSENT"
    WORK = "WORK"


class Team(str, Enum):
    A = "A"
    B = "B"


class ValidationType(str, Enum):
    MIN_AM = "MIN_AM"
    MIN_PM = "MIN_PM"
    AM_EXCEEDS_PM = "AM_EXCEEDS_PM"
    SPECIAL_DAY_AM_PRESENT = "SPECIAL_DAY_AM_PRESENT"


class SuggestionType(str, Enum):
    MOVE = "MOVE"
    SWAP = "SWAP"  # reserved; no rule emits swaps yet
    REMOVE_COVERAGE = "REMOVE_COVERAGE"
    ASSIGN = "ASSIGN"


class LockScope(str, Enum):
    WEEK = "WEEK"
    DAY = "DAY"


class WeekStatus(str, Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"


LEAVE_STATUSES = ("PENDING", "APPROVED", "REJECTED")

SHIFT_LABELS: Dict[ShiftKind, str] = {
    ShiftKind.MORNING: "AM",
    ShiftKind.EVENING: "PM",
    ShiftKind.NONE: "-",
    ShiftKind.COVER_EXT_AM: "Cover AM",
    ShiftKind.COVER_EXT_PM: "Cover PM",
}

_SHIFT_ALIASES: Dict[str, ShiftKind] = {
    "am": ShiftKind.MORNING,
    "morning": ShiftKind.MORNING,
    "pm": ShiftKind.EVENING,
    "evening": ShiftKind.EVENING,
    "none": ShiftKind.NONE,
    "off": ShiftKind.NONE,
    "cover_ext_am": ShiftKind.COVER_EXT_AM,
    "cover_ext_pm": ShiftKind.COVER_EXT_PM,
}


def normalize_shift(value) -> ShiftKind:
    """Coerce a stored or user-provided label into a ShiftKind."""
    if isinstance(value, ShiftKind):
        return value
    label = (value or "").strip().lower() if isinstance(value, str) else ""
    shift = _SHIFT_ALIASES.get(label)
    if shift is None:
        raise InvalidInputError(f"Unknown shift '{value}'.", details={"shift": value})
    return shift


def normalize_team(value) -> Team:
    if isinstance(value, Team):
        return value
    label = (value or "").strip().upper() if isinstance(value, str) else ""
    try:
        return Team(label)
    except ValueError:
        raise InvalidInputError(f"Unknown team '{value}'.", details={"team": value}) from None


def optional_team(value) -> Optional[Team]:
    if value is None or value == "":
        return None
    return normalize_team(value)


def is_am_shift(shift: ShiftKind) -> bool:
    """True for shifts that occupy the morning slot, boutique or external."""
    if shift in (ShiftKind.MORNING, ShiftKind.COVER_EXT_AM):
        return True
    if shift in (ShiftKind.EVENING, ShiftKind.COVER_EXT_PM, ShiftKind.NONE):
        return False
    raise InvalidInputError(f"Unhandled shift kind '{shift}'.")


def shift_label(shift: ShiftKind) -> str:
    return SHIFT_LABELS.get(shift, str(shift))
