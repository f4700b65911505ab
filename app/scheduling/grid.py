from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from database import (
    Employee,
    _coerce_employee_session,
    eligible_employees,
    employees_by_ids,
    get_employee,
    known_locations,
    list_active_overrides,
)
from errors import InvalidInputError, NotFoundError
from policy import exception_window_for, is_restricted_special_day, policy_for_session, week_start_weekday
from shifts import Availability, ShiftKind, Team, is_am_shift, optional_team

from .availability import AvailabilityIndex, load_availability_index
from .counts import DayCounts, compute_day_counts
from .overlay import effective_shift
from .rotation import base_shift
from .rules import RuleSnapshot, effective_minimums, load_rules
from .teams import TeamMap, resolve_teams_for_range
from .weeks import normalize_week_start, week_dates

logger = logging.getLogger(__name__)

GUEST_SHIFTS = (ShiftKind.MORNING, ShiftKind.EVENING)


@dataclass(frozen=True)
class GridCell:
    date: datetime.date
    availability: Availability
    base_shift: ShiftKind
    effective_shift: ShiftKind
    override_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "availability": self.availability.value,
            "base_shift": self.base_shift.value,
            "effective_shift": self.effective_shift.value,
            "override_id": self.override_id,
        }


@dataclass(frozen=True)
class GridRow:
    employee_id: int
    name: str
    team: Team
    cells: Tuple[GridCell, ...]
    is_guest: bool = False
    home_location: str = ""

    def cell_for(self, date_: datetime.date) -> Optional[GridCell]:
        for cell in self.cells:
            if cell.date == date_:
                return cell
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "name": self.name,
            "team": self.team.value,
            "is_guest": self.is_guest,
            "home_location": self.home_location,
            "cells": [cell.to_dict() for cell in self.cells],
        }


@dataclass(frozen=True)
class GridDay:
    date: datetime.date
    is_special_day: bool
    min_am: int
    min_pm: int
    rule: Optional[RuleSnapshot] = None
    exception_window: Optional[str] = None

    @property
    def day_of_week(self) -> int:
        return self.date.weekday()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "day_of_week": self.day_of_week,
            "is_special_day": self.is_special_day,
            "exception_window": self.exception_window,
            "min_am": self.min_am,
            "min_pm": self.min_pm,
            "rule": self.rule.to_dict() if self.rule else None,
        }


@dataclass(frozen=True)
class IntegrityWarning:
    type: str
    date: datetime.date
    employee_id: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "date": self.date.isoformat(),
            "employee_id": self.employee_id,
            "message": self.message,
        }


@dataclass(frozen=True)
class WeekGrid:
    week_start: datetime.date
    days: Tuple[GridDay, ...]
    rows: Tuple[GridRow, ...]
    counts: Tuple[DayCounts, ...]
    integrity_warnings: Tuple[IntegrityWarning, ...] = ()
    location: Optional[str] = None
    policy: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)
    counted_rows: Tuple[GridRow, ...] = field(default=(), compare=False, repr=False)

    @property
    def dates(self) -> List[datetime.date]:
        return [day.date for day in self.days]

    def day_index(self, date_: datetime.date) -> int:
        for index, day in enumerate(self.days):
            if day.date == date_:
                return index
        raise InvalidInputError(f"{date_.isoformat()} is not inside this week.", details={"date": date_.isoformat()})

    def cells_on(self, date_: datetime.date) -> List[Tuple[GridRow, GridCell]]:
        """Every counted (row, cell) pair for a date, guests included, in row order."""
        index = self.day_index(date_)
        return [(row, row.cells[index]) for row in self.counted_rows]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "week_start": self.week_start.isoformat(),
            "location": self.location,
            "days": [day.to_dict() for day in self.days],
            "rows": [row.to_dict() for row in self.rows],
            "counts": [counts.to_dict() for counts in self.counts],
            "integrity_warnings": [warning.to_dict() for warning in self.integrity_warnings],
        }


def sort_rows_for_display(rows: Iterable[GridRow]) -> List[GridRow]:
    """Team A before team B, then name (case-insensitive), then employee id."""
    return sorted(rows, key=lambda row: (0 if row.team is Team.A else 1, row.name.lower(), row.employee_id))


def _home_row(
    employee: Employee,
    dates: Sequence[datetime.date],
    team_map: TeamMap,
    availability: AvailabilityIndex,
    overrides: Dict[Tuple[int, datetime.date], Any],
    policy: Dict,
) -> GridRow:
    cells = []
    for date_ in dates:
        status = availability.availability_for(employee, date_)
        base = base_shift(team_map[(employee.id, date_)], date_, policy) if status is Availability.WORK else ShiftKind.NONE
        override = overrides.get((employee.id, date_))
        applied = override if status is Availability.WORK else None
        cells.append(
            GridCell(
                date=date_,
                availability=status,
                base_shift=base,
                effective_shift=effective_shift(status, base, applied.shift if applied else None),
                override_id=applied.id if applied else None,
            )
        )
    return GridRow(
        employee_id=employee.id,
        name=employee.full_name,
        team=team_map[(employee.id, dates[0])],
        cells=tuple(cells),
        home_location=employee.location,
    )


def _guest_row(
    employee: Employee,
    dates: Sequence[datetime.date],
    team_map: TeamMap,
    availability: AvailabilityIndex,
    overrides: Dict[Tuple[int, datetime.date], Any],
) -> GridRow:
    # Guests only staff the days their overrides place them here.
    cells = []
    for date_ in dates:
        status = availability.availability_for(employee, date_)
        override = overrides.get((employee.id, date_))
        applied = override if status is Availability.WORK else None
        cells.append(
            GridCell(
                date=date_,
                availability=status,
                base_shift=ShiftKind.NONE,
                effective_shift=effective_shift(status, ShiftKind.NONE, applied.shift if applied else None),
                override_id=applied.id if applied else None,
            )
        )
    return GridRow(
        employee_id=employee.id,
        name=employee.full_name,
        team=team_map[(employee.id, dates[0])],
        cells=tuple(cells),
        is_guest=True,
        home_location=employee.location,
    )


def _integrity_warnings(rows: Iterable[GridRow], policy: Dict) -> List[IntegrityWarning]:
    warnings = []
    for row in rows:
        for cell in row.cells:
            if cell.availability is not Availability.WORK:
                continue
            if is_am_shift(cell.effective_shift) and is_restricted_special_day(policy, cell.date):
                warnings.append(
                    IntegrityWarning(
                        type="SPECIAL_DAY_AM_PRESENT",
                        date=cell.date,
                        employee_id=row.employee_id,
                        message=f"Special-day AM present: {row.name} on {cell.date.isoformat()}",
                    )
                )
    return sorted(warnings, key=lambda warning: warning.date)


def build_week_grid(
    session,
    week_start,
    *,
    employee_id: Optional[int] = None,
    team=None,
    location: Optional[str] = None,
    include_guests: bool = False,
    employee_session=None,
    policy: Optional[Dict] = None,
    rules: Optional[Dict[int, RuleSnapshot]] = None,
) -> WeekGrid:
    """
    Compose availability, team, rotation and overrides into a 7-day grid.

    Filters are validated before anything is computed: an unknown team or
    location raises InvalidInputError, a missing employee raises
    NotFoundError. Guests (other boutiques' staff holding AM/PM overrides at
    the scoped location) are folded into the counts only for unfiltered
    location queries, and appear as rows only with include_guests.
    """
    policy = policy_for_session(session, policy)
    team_filter = optional_team(team)
    start = normalize_week_start(week_start, week_start_weekday(policy))
    dates = week_dates(start)
    end = dates[-1]

    employee_session, close_session = _coerce_employee_session(employee_session)
    try:
        if location is not None and location not in known_locations(session, employee_session):
            raise InvalidInputError(f"Unknown location '{location}'.", details={"location": location})
        if employee_id is not None and get_employee(employee_session, employee_id) is None:
            raise NotFoundError(f"Employee {employee_id} was not found.", details={"employee_id": employee_id})
        if rules is None:
            rules = load_rules(session)

        employees = eligible_employees(employee_session, employee_id=employee_id, location=location)
        home_ids = [employee.id for employee in employees]
        team_map = resolve_teams_for_range(employee_session, employees, start, end)
        availability = load_availability_index(employee_session, home_ids, start, end, location_scope=location)
        overrides = {
            (row.employee_id, row.date): row
            for row in list_active_overrides(session, start, end, employee_ids=home_ids)
        }
        home_rows = sort_rows_for_display(
            _home_row(employee, dates, team_map, availability, overrides, policy) for employee in employees
        )
        if team_filter is not None:
            home_rows = [row for row in home_rows if row.team is team_filter]

        guest_rows: List[GridRow] = []
        if location is not None and employee_id is None and team_filter is None:
            guest_rows = _load_guest_rows(session, employee_session, location, set(home_ids), dates)
    finally:
        if close_session:
            employee_session.close()

    counted_rows = tuple(home_rows) + tuple(guest_rows)
    counts = tuple(compute_day_counts(row.cells[index] for row in counted_rows) for index in range(len(dates)))
    days = []
    for date_ in dates:
        rule = rules.get(date_.weekday())
        min_am, min_pm = effective_minimums(date_, rule, policy)
        window = exception_window_for(policy, date_)
        days.append(
            GridDay(
                date=date_,
                is_special_day=is_restricted_special_day(policy, date_),
                min_am=min_am,
                min_pm=min_pm,
                rule=rule,
                exception_window=window["label"] if window else None,
            )
        )
    visible_rows = counted_rows if include_guests else tuple(home_rows)
    logger.debug(
        "Built grid for %s (location=%s team=%s employee=%s): %d rows, %d guests",
        start.isoformat(),
        location,
        team_filter.value if team_filter else None,
        employee_id,
        len(home_rows),
        len(guest_rows),
    )
    return WeekGrid(
        week_start=start,
        days=tuple(days),
        rows=visible_rows,
        counts=counts,
        integrity_warnings=tuple(_integrity_warnings(counted_rows, policy)),
        location=location,
        policy=policy,
        counted_rows=counted_rows,
    )


def _load_guest_rows(
    session,
    employee_session,
    location: str,
    home_ids: set,
    dates: Sequence[datetime.date],
) -> List[GridRow]:
    start, end = dates[0], dates[-1]
    guest_overrides = {
        (row.employee_id, row.date): row
        for row in list_active_overrides(session, start, end, location=location)
        if row.employee_id not in home_ids and row.shift in GUEST_SHIFTS
    }
    if not guest_overrides:
        return []
    candidates = employees_by_ids(employee_session, {employee_id for employee_id, _ in guest_overrides})
    guests = [
        employee
        for employee in candidates.values()
        if employee.is_rosterable and employee.location != location
    ]
    if not guests:
        return []
    guest_ids = [employee.id for employee in guests]
    team_map = resolve_teams_for_range(employee_session, guests, start, end)
    availability = load_availability_index(employee_session, guest_ids, start, end, location_scope=location)
    rows = [_guest_row(employee, dates, team_map, availability, guest_overrides) for employee in guests]
    return sort_rows_for_display(rows)
