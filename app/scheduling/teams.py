from __future__ import annotations

import bisect
import datetime
from collections import defaultdict
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from database import Employee, get_employee, list_team_assignments, list_team_history
from errors import NotFoundError
from shifts import Team, normalize_team

TeamKey = Tuple[int, datetime.date]


class TeamMap(Mapping[TeamKey, Team]):
    """Immutable (employee_id, date) -> Team lookup built once per grid."""

    def __init__(self, teams: Dict[TeamKey, Team], changing: FrozenSet[int]) -> None:
        self._teams = MappingProxyType(dict(teams))
        self.changing = changing

    def __getitem__(self, key: TeamKey) -> Team:
        return self._teams[key]

    def __iter__(self) -> Iterator[TeamKey]:
        return iter(self._teams)

    def __len__(self) -> int:
        return len(self._teams)

    def changes_within(self, employee_id: int) -> bool:
        return employee_id in self.changing


class _Timeline:
    """Effective-dated team records for one employee, sorted by effective date."""

    def __init__(self, records: List[Tuple[datetime.date, str]]) -> None:
        self.records = sorted(records, key=lambda item: item[0])
        self.dates = [effective for effective, _ in self.records]

    def team_on(self, date_: datetime.date) -> Optional[str]:
        position = bisect.bisect_right(self.dates, date_)
        if position == 0:
            return None
        return self.records[position - 1][1]

    def changes_between(self, start: datetime.date, end: datetime.date) -> bool:
        return any(start < effective <= end for effective in self.dates)


def _timelines(rows) -> Dict[int, _Timeline]:
    grouped: Dict[int, List[Tuple[datetime.date, str]]] = defaultdict(list)
    for row in rows:
        grouped[row.employee_id].append((row.effective_from, row.team))
    return {employee_id: _Timeline(records) for employee_id, records in grouped.items()}


def _pick_team(
    employee: Employee,
    date_: datetime.date,
    assignments: Optional[_Timeline],
    history: Optional[_Timeline],
) -> Team:
    raw = assignments.team_on(date_) if assignments else None
    if raw is None and history is not None:
        raw = history.team_on(date_)
    if raw is None:
        raw = employee.default_team
    return normalize_team(raw)


def resolve_teams_for_range(
    employee_session,
    employees: Iterable[Employee],
    start: datetime.date,
    end: datetime.date,
) -> TeamMap:
    employees = list(employees)
    ids = [employee.id for employee in employees]
    teams: Dict[TeamKey, Team] = {}
    if not ids:
        return TeamMap(teams, frozenset())
    assignment_lines = _timelines(list_team_assignments(employee_session, ids, end))
    history_lines = _timelines(list_team_history(employee_session, ids, end))
    changing = set()
    for employee in employees:
        assignments = assignment_lines.get(employee.id)
        history = history_lines.get(employee.id)
        if any(line and line.changes_between(start, end) for line in (assignments, history)):
            changing.add(employee.id)
            day = start
            while day <= end:
                teams[(employee.id, day)] = _pick_team(employee, day, assignments, history)
                day += datetime.timedelta(days=1)
            continue
        team = _pick_team(employee, start, assignments, history)
        day = start
        while day <= end:
            teams[(employee.id, day)] = team
            day += datetime.timedelta(days=1)
    return TeamMap(teams, frozenset(changing))


def resolve_team(employee_session, employee_id: int, date_: datetime.date) -> Team:
    employee = get_employee(employee_session, employee_id)
    if employee is None:
        raise NotFoundError(f"Employee {employee_id} was not found.", details={"employee_id": employee_id})
    return resolve_teams_for_range(employee_session, [employee], date_, date_)[(employee_id, date_)]
