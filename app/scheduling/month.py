from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from database import _coerce_employee_session
from policy import policy_for_session, week_start_weekday
from validation import ValidationResult, validate

from .counts import DayCounts
from .grid import GridCell, GridDay, IntegrityWarning, WeekGrid, build_week_grid
from .rules import load_rules
from .weeks import month_dates, normalize_week_start, parse_month_key


@dataclass(frozen=True)
class MonthCell:
    employee_id: int
    name: str
    team: str
    is_guest: bool
    cell: GridCell

    def to_dict(self) -> Dict[str, Any]:
        payload = self.cell.to_dict()
        payload.update(employee_id=self.employee_id, name=self.name, team=self.team, is_guest=self.is_guest)
        return payload


@dataclass(frozen=True)
class MonthDay:
    week_start: datetime.date
    day: GridDay
    counts: DayCounts
    cells: Tuple[MonthCell, ...]
    validations: Tuple[ValidationResult, ...]
    integrity_warnings: Tuple[IntegrityWarning, ...]

    @property
    def date(self) -> datetime.date:
        return self.day.date

    def to_dict(self) -> Dict[str, Any]:
        payload = self.day.to_dict()
        payload.update(
            week_start=self.week_start.isoformat(),
            counts=self.counts.to_dict(),
            cells=[cell.to_dict() for cell in self.cells],
            validations=[result.to_dict() for result in self.validations],
            integrity_warnings=[warning.to_dict() for warning in self.integrity_warnings],
        )
        return payload


@dataclass(frozen=True)
class MonthRollup:
    year: int
    month: int
    days: Tuple[MonthDay, ...]
    location: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def counts_for(self, date_: datetime.date) -> DayCounts:
        for day in self.days:
            if day.date == date_:
                return day.counts
        raise KeyError(date_)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "month": self.key,
            "location": self.location,
            "days": [day.to_dict() for day in self.days],
        }


def _slice_day(grid: WeekGrid, date_: datetime.date) -> MonthDay:
    index = grid.day_index(date_)
    day = grid.days[index]
    counts = grid.counts[index]
    return MonthDay(
        week_start=grid.week_start,
        day=day,
        counts=counts,
        cells=tuple(
            MonthCell(row.employee_id, row.name, row.team.value, row.is_guest, row.cells[index])
            for row in grid.rows
        ),
        validations=tuple(validate(date_, counts, day.rule, grid.policy)),
        integrity_warnings=tuple(warning for warning in grid.integrity_warnings if warning.date == date_),
    )


def build_month(
    session,
    month: str,
    *,
    employee_id: Optional[int] = None,
    team=None,
    location: Optional[str] = None,
    include_guests: bool = False,
    employee_session=None,
    policy: Optional[Dict] = None,
) -> MonthRollup:
    """Roll weekly grids up into per-day rows; counts come straight from the week grids."""
    year, month_number = parse_month_key(month)
    policy = policy_for_session(session, policy)
    rules = load_rules(session)
    grids: Dict[datetime.date, WeekGrid] = {}
    days: List[MonthDay] = []
    employee_session, close_session = _coerce_employee_session(employee_session)
    try:
        for date_ in month_dates(year, month_number):
            week_start = normalize_week_start(date_, week_start_weekday(policy))
            grid = grids.get(week_start)
            if grid is None:
                grid = build_week_grid(
                    session,
                    week_start,
                    employee_id=employee_id,
                    team=team,
                    location=location,
                    include_guests=include_guests,
                    employee_session=employee_session,
                    policy=policy,
                    rules=rules,
                )
                grids[week_start] = grid
            days.append(_slice_day(grid, date_))
    finally:
        if close_session:
            employee_session.close()
    return MonthRollup(year=year, month=month_number, days=tuple(days), location=location)
