from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from policy import policy_for_session
from shifts import Availability, ShiftKind
from validation import validate

from .grid import build_week_grid
from .weeks import parse_iso_date


@dataclass
class RosterForDate:
    date: datetime.date
    am: List[Dict[str, Any]] = field(default_factory=list)
    pm: List[Dict[str, Any]] = field(default_factory=list)
    coverage_am: List[Dict[str, Any]] = field(default_factory=list)
    coverage_pm: List[Dict[str, Any]] = field(default_factory=list)
    off: List[Dict[str, Any]] = field(default_factory=list)
    leave: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "am": self.am,
            "pm": self.pm,
            "coverage_am": self.coverage_am,
            "coverage_pm": self.coverage_pm,
            "off": self.off,
            "leave": self.leave,
            "warnings": self.warnings,
        }


def roster_for_date(
    session,
    date_value,
    *,
    location: Optional[str] = None,
    employee_session=None,
    policy: Optional[Dict] = None,
) -> RosterForDate:
    """Who works AM, PM, external coverage, or is off/on leave on one date."""
    date_ = parse_iso_date(date_value)
    policy = policy_for_session(session, policy)
    grid = build_week_grid(
        session,
        date_,
        location=location,
        include_guests=True,
        employee_session=employee_session,
        policy=policy,
    )
    roster = RosterForDate(date=date_)
    buckets = {
        ShiftKind.MORNING: roster.am,
        ShiftKind.EVENING: roster.pm,
        ShiftKind.COVER_EXT_AM: roster.coverage_am,
        ShiftKind.COVER_EXT_PM: roster.coverage_pm,
    }
    for row, cell in grid.cells_on(date_):
        entry = {"employee_id": row.employee_id, "name": row.name, "is_guest": row.is_guest}
        if row.is_guest and cell.effective_shift is ShiftKind.NONE:
            continue
        if cell.availability is Availability.LEAVE:
            roster.leave.append(entry)
        elif cell.effective_shift is ShiftKind.NONE:
            roster.off.append(entry)
        else:
            buckets[cell.effective_shift].append(entry)
    index = grid.day_index(date_)
    day = grid.days[index]
    roster.warnings = [result.message for result in validate(date_, grid.counts[index], day.rule, policy)]
    roster.warnings.extend(warning.message for warning in grid.integrity_warnings if warning.date == date_)
    return roster
