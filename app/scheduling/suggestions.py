"""
Advisory fixes for coverage warnings.

Suggestions are recomputed from a grid on every call and never written
anywhere. Each day gets at most one suggestion per root cause, tried in a
fixed priority: rebalance AM into PM, reclaim external AM coverage, reclaim
external PM coverage, clear special-day AM, then assign an idle employee to
PM. A day with no safe fix gets no suggestion.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from database import _coerce_employee_session, count_active_overrides
from policy import policy_for_session
from shifts import Availability, ShiftKind, SuggestionType, ValidationType, is_am_shift
from validation import validate_grid

from .counts import DayCounts, add_shift
from .grid import GridCell, GridDay, GridRow, WeekGrid, build_week_grid
from .weeks import month_bounds

MonthKey = Tuple[int, int]


@dataclass(frozen=True)
class ProposedChange:
    employee_id: int
    date: datetime.date
    from_shift: ShiftKind
    to_shift: ShiftKind

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": self.employee_id,
            "date": self.date.isoformat(),
            "from_shift": self.from_shift.value,
            "to_shift": self.to_shift.value,
        }


@dataclass(frozen=True)
class Suggestion:
    id: str
    type: SuggestionType
    date: datetime.date
    root_cause: ValidationType
    affected_employees: Tuple[int, ...]
    before_counts: DayCounts
    after_counts: DayCounts
    reason: str
    highlight_keys: Tuple[str, ...]
    proposed_changes: Tuple[ProposedChange, ...]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "date": self.date.isoformat(),
            "root_cause": self.root_cause.value,
            "affected_employees": list(self.affected_employees),
            "before_counts": self.before_counts.to_dict(),
            "after_counts": self.after_counts.to_dict(),
            "reason": self.reason,
            "highlight_keys": list(self.highlight_keys),
            "proposed_changes": [change.to_dict() for change in self.proposed_changes],
        }


def highlight_key(employee_id: int, date_: datetime.date) -> str:
    return f"{employee_id}|{date_.isoformat()}"


def _single_change(
    suggestion_id: str,
    kind: SuggestionType,
    root_cause: ValidationType,
    row: GridRow,
    cell: GridCell,
    target: ShiftKind,
    before: DayCounts,
    reason: str,
) -> Suggestion:
    return Suggestion(
        id=suggestion_id,
        type=kind,
        date=cell.date,
        root_cause=root_cause,
        affected_employees=(row.employee_id,),
        before_counts=before,
        after_counts=before.with_move(cell.effective_shift, target),
        reason=reason,
        highlight_keys=(highlight_key(row.employee_id, cell.date),),
        proposed_changes=(ProposedChange(row.employee_id, cell.date, cell.effective_shift, target),),
    )


def _working(pairs: Iterable[Tuple[GridRow, GridCell]], shift: ShiftKind) -> List[Tuple[GridRow, GridCell]]:
    return [
        (row, cell)
        for row, cell in pairs
        if not row.is_guest and cell.availability is Availability.WORK and cell.effective_shift is shift
    ]


def _rank_by_fairness(
    candidates: Sequence[Tuple[GridRow, GridCell]],
    override_counts: Mapping[int, int],
) -> List[Tuple[GridRow, GridCell]]:
    # Candidates arrive in row order; the index keeps ties stable.
    indexed = list(enumerate(candidates))
    indexed.sort(key=lambda item: (override_counts.get(item[1][0].employee_id, 0), item[0]))
    return [pair for _, pair in indexed]


def _suggest_for_day(
    day: GridDay,
    counts: DayCounts,
    warnings: Set[ValidationType],
    pairs: List[Tuple[GridRow, GridCell]],
    override_counts: Mapping[int, int],
) -> List[Suggestion]:
    date_ = day.date
    iso = date_.isoformat()
    suggestions: List[Suggestion] = []
    handled: Set[ValidationType] = set()

    if not day.is_special_day and ValidationType.AM_EXCEEDS_PM in warnings:
        after = counts.with_move(ShiftKind.MORNING, ShiftKind.EVENING)
        if after.am >= day.min_am and after.am <= after.pm:
            ranked = _rank_by_fairness(_working(pairs, ShiftKind.MORNING), override_counts)
            if ranked:
                row, cell = ranked[0]
                suggestions.append(
                    _single_change(
                        f"move-{iso}-{row.employee_id}",
                        SuggestionType.MOVE,
                        ValidationType.AM_EXCEEDS_PM,
                        row,
                        cell,
                        ShiftKind.EVENING,
                        counts,
                        f"AM ({counts.am}) exceeds PM ({counts.pm}). Moving {row.name} to PM "
                        f"gives AM {after.am} / PM {after.pm}.",
                    )
                )
                handled.add(ValidationType.AM_EXCEEDS_PM)

    if not day.is_special_day and counts.am < day.min_am:
        covers = _working(pairs, ShiftKind.COVER_EXT_AM)
        if covers:
            row, cell = covers[0]
            after = counts.with_move(ShiftKind.COVER_EXT_AM, ShiftKind.MORNING)
            suggestions.append(
                _single_change(
                    f"remove-cover-am-{iso}-{row.employee_id}",
                    SuggestionType.REMOVE_COVERAGE,
                    ValidationType.MIN_AM,
                    row,
                    cell,
                    ShiftKind.MORNING,
                    counts,
                    f"AM ({counts.am}) is below minimum {day.min_am}. Returning {row.name} from "
                    f"external AM coverage gives AM {after.am}.",
                )
            )
            handled.add(ValidationType.MIN_AM)

    pm_short = ValidationType.MIN_PM in warnings
    imbalance = (
        not day.is_special_day
        and counts.pm < counts.am
        and ValidationType.AM_EXCEEDS_PM not in handled
    )
    if pm_short or imbalance:
        root_cause = ValidationType.MIN_PM if pm_short else ValidationType.AM_EXCEEDS_PM
        covers = _working(pairs, ShiftKind.COVER_EXT_PM)
        if covers:
            row, cell = covers[0]
            after = counts.with_move(ShiftKind.COVER_EXT_PM, ShiftKind.EVENING)
            suggestions.append(
                _single_change(
                    f"remove-cover-pm-{iso}-{row.employee_id}",
                    SuggestionType.REMOVE_COVERAGE,
                    root_cause,
                    row,
                    cell,
                    ShiftKind.EVENING,
                    counts,
                    f"PM ({counts.pm}) is short (minimum {day.min_pm}, AM {counts.am}). Returning "
                    f"{row.name} from external PM coverage gives PM {after.pm}.",
                )
            )
            handled.add(root_cause)

    if day.is_special_day and ValidationType.SPECIAL_DAY_AM_PRESENT in warnings:
        offending = [
            (row, cell)
            for row, cell in pairs
            if not row.is_guest and cell.availability is Availability.WORK and is_am_shift(cell.effective_shift)
        ]
        if offending:
            row, cell = offending[0]
            after = counts.with_move(cell.effective_shift, ShiftKind.EVENING)
            suggestions.append(
                _single_change(
                    f"move-special-am-pm-{iso}-{row.employee_id}",
                    SuggestionType.MOVE,
                    ValidationType.SPECIAL_DAY_AM_PRESENT,
                    row,
                    cell,
                    ShiftKind.EVENING,
                    counts,
                    f"{date_.strftime('%A')} is PM-only; AM ({counts.am}) must be 0. Moving {row.name} "
                    f"from AM to PM gives AM {after.am} / PM {after.pm}.",
                )
            )

    if pm_short and ValidationType.MIN_PM not in handled:
        idle = _rank_by_fairness(_working(pairs, ShiftKind.NONE), override_counts)
        if idle:
            row, cell = idle[0]
            after = add_shift(counts, ShiftKind.EVENING)
            suggestions.append(
                _single_change(
                    f"assign-pm-{iso}-{row.employee_id}",
                    SuggestionType.ASSIGN,
                    ValidationType.MIN_PM,
                    row,
                    cell,
                    ShiftKind.EVENING,
                    counts,
                    f"PM ({counts.pm}) is below minimum {day.min_pm}. Assigning {row.name} to PM "
                    f"gives PM {after.pm}.",
                )
            )
    return suggestions


def build_suggestions(
    grid: WeekGrid,
    override_counts: Optional[Mapping[MonthKey, Mapping[int, int]]] = None,
) -> List[Suggestion]:
    """Pure: derive advisory suggestions for every day of a grid."""
    override_counts = override_counts or {}
    by_date = validate_grid(grid)
    suggestions: List[Suggestion] = []
    for day, counts in zip(grid.days, grid.counts):
        warnings = {result.type for result in by_date.get(day.date, [])}
        month_counts = override_counts.get((day.date.year, day.date.month), {})
        suggestions.extend(_suggest_for_day(day, counts, warnings, grid.cells_on(day.date), month_counts))
    return suggestions


def monthly_override_counts(
    session,
    dates: Iterable[datetime.date],
    *,
    location: Optional[str] = None,
) -> Dict[MonthKey, Dict[int, int]]:
    """Active override counts per employee for every calendar month the dates touch."""
    result: Dict[MonthKey, Dict[int, int]] = {}
    for date_ in dates:
        key = (date_.year, date_.month)
        if key in result:
            continue
        start, end = month_bounds(date_)
        result[key] = count_active_overrides(session, start, end, location=location)
    return result


def suggest_for_week(
    session,
    week_start,
    *,
    location: Optional[str] = None,
    employee_session=None,
    policy: Optional[Dict] = None,
) -> List[Suggestion]:
    policy = policy_for_session(session, policy)
    employee_session, close_session = _coerce_employee_session(employee_session)
    try:
        grid = build_week_grid(
            session,
            week_start,
            location=location,
            employee_session=employee_session,
            policy=policy,
        )
    finally:
        if close_session:
            employee_session.close()
    return build_suggestions(grid, monthly_override_counts(session, grid.dates))
