from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional, Tuple

from database import Employee, get_employee, list_absence_marks, list_approved_leaves
from errors import NotFoundError
from shifts import Availability


def derive_availability(
    date_: datetime.date,
    weekly_off_day: int,
    *,
    on_leave: bool,
    absent: bool,
) -> Availability:
    """Leave, then weekly off, then absence; anything else is a working day."""
    if on_leave:
        return Availability.LEAVE
    if date_.weekday() == weekly_off_day:
        return Availability.OFF
    if absent:
        return Availability.ABSENT
    return Availability.WORK


@dataclass(frozen=True)
class AvailabilityIndex:
    """Leave and absence days for a window, keyed by (employee_id, date)."""

    leave_days: FrozenSet[Tuple[int, datetime.date]]
    absent_days: FrozenSet[Tuple[int, datetime.date]]

    def availability_for(self, employee: Employee, date_: datetime.date) -> Availability:
        key = (employee.id, date_)
        return derive_availability(
            date_,
            employee.weekly_off_day,
            on_leave=key in self.leave_days,
            absent=key in self.absent_days,
        )


def load_availability_index(
    employee_session,
    employee_ids: Iterable[int],
    start: datetime.date,
    end: datetime.date,
    *,
    location_scope: Optional[str] = None,
) -> AvailabilityIndex:
    ids = set(employee_ids)
    leave_days = set()
    for leave in list_approved_leaves(employee_session, ids, start, end):
        day = max(leave.start_date, start)
        last = min(leave.end_date, end)
        while day <= last:
            leave_days.add((leave.employee_id, day))
            day += datetime.timedelta(days=1)
    absent_days = {
        (mark.employee_id, mark.date)
        for mark in list_absence_marks(employee_session, ids, start, end, location=location_scope)
    }
    return AvailabilityIndex(frozenset(leave_days), frozenset(absent_days))


def resolve_availability(
    employee_session,
    employee_id: int,
    date_: datetime.date,
    location_scope: Optional[str] = None,
) -> Availability:
    employee = get_employee(employee_session, employee_id)
    if employee is None:
        raise NotFoundError(f"Employee {employee_id} was not found.", details={"employee_id": employee_id})
    index = load_availability_index(
        employee_session, [employee_id], date_, date_, location_scope=location_scope
    )
    return index.availability_for(employee, date_)
