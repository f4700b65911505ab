"""
Write path for schedule edits.

The grid builder, validator and suggester never write. Everything that
changes overrides, team assignments, locks or week approval goes through
this module, which checks locks first, re-derives the affected cells from
current state, writes, and drops cached validation results for the touched
dates.
"""

from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from database import (
    ShiftOverride,
    TeamAssignment,
    _coerce_employee_session,
    add_absence_mark,
    add_leave,
    add_team_assignment,
    create_lock,
    deactivate_override,
    get_active_lock,
    get_employee,
    get_override,
    get_week_status_row,
    list_active_day_locks,
    revoke_lock,
    set_week_status,
    upsert_coverage_rule,
    upsert_override,
)
from errors import InvalidInputError, NotFoundError, ScheduleLockedError, StaleSuggestionConflict
from policy import is_restricted_special_day, policy_for_session, week_start_weekday
from scheduling.availability import resolve_availability
from scheduling.counts import DayCounts
from scheduling.grid import GridCell, build_week_grid
from scheduling.overlay import effective_shift
from scheduling.rotation import base_shift
from scheduling.suggestions import Suggestion, build_suggestions, monthly_override_counts
from scheduling.teams import resolve_team
from scheduling.weeks import normalize_week_start, parse_iso_date
from shifts import Availability, LockScope, ShiftKind, WeekStatus, is_am_shift, normalize_shift, normalize_team
from validation import ValidationCache, validation_cache

logger = logging.getLogger(__name__)

SPECIAL_DAY_AM_NOT_ALLOWED = "SPECIAL_DAY_AM_NOT_ALLOWED"


def _scope(location: Optional[str], policy: Dict) -> str:
    return location if location else policy.get("default_location", "")


def _cache(cache: Optional[ValidationCache]) -> ValidationCache:
    return validation_cache if cache is None else cache


def assert_schedule_editable(
    session,
    dates: Iterable,
    *,
    location: Optional[str] = None,
    policy: Optional[Dict] = None,
) -> None:
    """Raise ScheduleLockedError if any date sits in a locked week or is a locked day."""
    policy = policy_for_session(session, policy)
    scope = _scope(location, policy)
    normalized = sorted({parse_iso_date(value) for value in dates})
    if not normalized:
        return
    week_starts = sorted({normalize_week_start(date_, week_start_weekday(policy)) for date_ in normalized})
    for week_start in week_starts:
        if get_active_lock(session, LockScope.WEEK, week_start, scope) is not None:
            logger.warning("Refused edit in locked week %s (location=%r)", week_start.isoformat(), scope)
            raise ScheduleLockedError(
                f"Week starting {week_start.isoformat()} is locked.",
                code="WEEK_LOCKED",
                details={"week_start": week_start.isoformat(), "location": scope},
            )
    day_locks = list_active_day_locks(session, normalized, scope)
    if day_locks:
        locked = [lock.scope_value.isoformat() for lock in day_locks]
        logger.warning("Refused edit on locked days %s (location=%r)", ", ".join(locked), scope)
        raise ScheduleLockedError(
            f"Day {locked[0]} is locked.",
            code="DAY_LOCKED",
            details={"dates": locked, "location": scope},
        )


def ensure_shift_allowed(date_: datetime.date, shift: ShiftKind, policy: Dict) -> None:
    if is_am_shift(shift) and is_restricted_special_day(policy, date_):
        raise InvalidInputError(
            f"AM shifts are not allowed on {date_.strftime('%A')} {date_.isoformat()}.",
            code=SPECIAL_DAY_AM_NOT_ALLOWED,
            details={"date": date_.isoformat(), "shift": shift.value},
        )


def _current_cell(
    session,
    employee_session,
    employee_id: int,
    date_: datetime.date,
    policy: Dict,
    location: Optional[str],
) -> GridCell:
    status = resolve_availability(employee_session, employee_id, date_, location or None)
    base = ShiftKind.NONE
    if status is Availability.WORK:
        base = base_shift(resolve_team(employee_session, employee_id, date_), date_, policy)
    override = get_override(session, employee_id, date_)
    active = override if override is not None and override.is_active and status is Availability.WORK else None
    return GridCell(
        date=date_,
        availability=status,
        base_shift=base,
        effective_shift=effective_shift(status, base, active.shift if active else None),
        override_id=active.id if active else None,
    )


def _write_change(
    session,
    employee_id: int,
    cell: GridCell,
    target: ShiftKind,
    *,
    location: str,
    reason: str,
    actor: str,
) -> str:
    """Persist one cell change without committing; returns what happened."""
    if target is cell.effective_shift:
        return "unchanged"
    if cell.override_id is not None and target is cell.base_shift:
        deactivate_override(session, employee_id, cell.date, commit=False)
        return "reverted"
    upsert_override(
        session,
        employee_id,
        cell.date,
        target.value,
        location=location,
        reason=reason,
        created_by=actor,
        commit=False,
    )
    return "applied"


def apply_override_change(
    session,
    employee_id: int,
    date_value,
    shift,
    *,
    location: str = "",
    reason: str = "",
    actor: str = "system",
    employee_session=None,
    policy: Optional[Dict] = None,
    cache: Optional[ValidationCache] = None,
) -> ShiftOverride:
    policy = policy_for_session(session, policy)
    date_ = parse_iso_date(date_value)
    target = normalize_shift(shift)
    employee_session, close_session = _coerce_employee_session(employee_session)
    try:
        if get_employee(employee_session, employee_id) is None:
            raise NotFoundError(f"Employee {employee_id} was not found.", details={"employee_id": employee_id})
    finally:
        if close_session:
            employee_session.close()
    ensure_shift_allowed(date_, target, policy)
    assert_schedule_editable(session, [date_], location=location, policy=policy)
    override = upsert_override(
        session,
        employee_id,
        date_,
        target.value,
        location=location,
        reason=reason,
        created_by=actor,
    )
    _cache(cache).invalidate([date_])
    logger.info("%s set %s for employee %s on %s", actor, target.value, employee_id, date_.isoformat())
    return override


def clear_override(
    session,
    employee_id: int,
    date_value,
    *,
    location: str = "",
    actor: str = "system",
    policy: Optional[Dict] = None,
    cache: Optional[ValidationCache] = None,
) -> bool:
    policy = policy_for_session(session, policy)
    date_ = parse_iso_date(date_value)
    assert_schedule_editable(session, [date_], location=location, policy=policy)
    removed = deactivate_override(session, employee_id, date_)
    if removed:
        _cache(cache).invalidate([date_])
        logger.info("%s cleared override for employee %s on %s", actor, employee_id, date_.isoformat())
    return removed


def apply_grid_changes(
    session,
    changes: Sequence[Mapping[str, Any]],
    *,
    location: str = "",
    reason: str = "",
    actor: str = "system",
    employee_session=None,
    policy: Optional[Dict] = None,
    cache: Optional[ValidationCache] = None,
) -> Dict[str, Any]:
    """
    Save a batch of grid edits.

    Each change is {employee_id, date, shift, original_effective_shift?}.
    A change back to the rotation shift deactivates the override instead of
    writing a new one. AM on a restricted special day is skipped and
    reported. A change whose original_effective_shift no longer matches the
    stored state aborts the whole batch before anything is written.
    """
    policy = policy_for_session(session, policy)
    if not changes:
        return {"applied": 0, "reverted": 0, "unchanged": 0, "total": 0, "skipped": []}
    parsed = []
    for change in changes:
        try:
            employee_id = int(change["employee_id"])
        except (KeyError, TypeError, ValueError):
            raise InvalidInputError("Each change needs an integer employee_id.", details={"change": dict(change)}) from None
        original = change.get("original_effective_shift")
        parsed.append(
            (
                employee_id,
                parse_iso_date(change.get("date")),
                normalize_shift(change.get("shift")),
                normalize_shift(original) if original is not None else None,
            )
        )
    assert_schedule_editable(session, [item[1] for item in parsed], location=location, policy=policy)

    outcome = {"applied": 0, "reverted": 0, "unchanged": 0, "total": len(parsed), "skipped": []}
    employee_session, close_session = _coerce_employee_session(employee_session)
    try:
        planned = []
        for employee_id, date_, target, original in parsed:
            if is_am_shift(target) and is_restricted_special_day(policy, date_):
                outcome["skipped"].append(
                    {"employee_id": employee_id, "date": date_.isoformat(), "reason": SPECIAL_DAY_AM_NOT_ALLOWED}
                )
                continue
            cell = _current_cell(session, employee_session, employee_id, date_, policy, location)
            if original is not None and original is not cell.effective_shift:
                raise StaleSuggestionConflict(
                    f"Shift for employee {employee_id} on {date_.isoformat()} changed since it was loaded.",
                    details={
                        "employee_id": employee_id,
                        "date": date_.isoformat(),
                        "expected": original.value,
                        "current": cell.effective_shift.value,
                    },
                )
            if cell.availability is not Availability.WORK and target is not ShiftKind.NONE:
                outcome["skipped"].append(
                    {"employee_id": employee_id, "date": date_.isoformat(), "reason": cell.availability.value}
                )
                continue
            planned.append((employee_id, cell, target))
    finally:
        if close_session:
            employee_session.close()

    for employee_id, cell, target in planned:
        result = _write_change(session, employee_id, cell, target, location=location, reason=reason, actor=actor)
        outcome[result] += 1
    session.commit()
    _cache(cache).invalidate({item[1] for item in parsed})
    logger.info(
        "%s saved %d grid changes (%d applied, %d reverted, %d skipped)",
        actor,
        len(parsed),
        outcome["applied"],
        outcome["reverted"],
        len(outcome["skipped"]),
    )
    return outcome


def _counts_match(expected, actual: DayCounts) -> bool:
    if isinstance(expected, DayCounts):
        return expected == actual
    return dict(expected) == actual.to_dict()


def apply_suggestion(
    session,
    suggestion_id: str,
    week_start,
    *,
    expected_before=None,
    location: Optional[str] = None,
    actor: str = "system",
    employee_session=None,
    policy: Optional[Dict] = None,
    cache: Optional[ValidationCache] = None,
) -> Suggestion:
    """Re-derive suggestions from current state and apply one, or fail if it went stale."""
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
        current = {
            suggestion.id: suggestion
            for suggestion in build_suggestions(grid, monthly_override_counts(session, grid.dates))
        }
        suggestion = current.get(suggestion_id)
        if suggestion is None:
            logger.warning("Suggestion %s is no longer offered for week %s", suggestion_id, grid.week_start)
            raise StaleSuggestionConflict(
                f"Suggestion '{suggestion_id}' no longer applies to the current schedule.",
                details={"suggestion_id": suggestion_id, "week_start": grid.week_start.isoformat()},
            )
        if expected_before is not None and not _counts_match(expected_before, suggestion.before_counts):
            logger.warning("Suggestion %s counts drifted", suggestion_id)
            raise StaleSuggestionConflict(
                f"Counts for {suggestion.date.isoformat()} changed since suggestion '{suggestion_id}' was made.",
                details={"suggestion_id": suggestion_id, "current": suggestion.before_counts.to_dict()},
            )
        assert_schedule_editable(
            session,
            [change.date for change in suggestion.proposed_changes],
            location=location,
            policy=policy,
        )
        scope = location or ""
        for change in suggestion.proposed_changes:
            cell = _current_cell(session, employee_session, change.employee_id, change.date, policy, location)
            _write_change(
                session,
                change.employee_id,
                cell,
                change.to_shift,
                location=scope,
                reason=suggestion.reason,
                actor=actor,
            )
    finally:
        if close_session:
            employee_session.close()
    session.commit()
    _cache(cache).invalidate([suggestion.date])
    logger.info("%s applied suggestion %s", actor, suggestion_id)
    return suggestion


def apply_team_change(
    employee_session,
    session,
    employee_id: int,
    team,
    effective_from,
    *,
    today: Optional[datetime.date] = None,
    actor: str = "system",
    location: str = "",
    policy: Optional[Dict] = None,
    cache: Optional[ValidationCache] = None,
) -> TeamAssignment:
    """Record a non-retroactive team change starting on effective_from."""
    policy = policy_for_session(session, policy)
    new_team = normalize_team(team)
    start = parse_iso_date(effective_from)
    today = today or datetime.date.today()
    if start < today:
        raise InvalidInputError(
            "Team changes cannot take effect in the past.",
            details={"effective_from": start.isoformat(), "today": today.isoformat()},
        )
    if get_employee(employee_session, employee_id) is None:
        raise NotFoundError(f"Employee {employee_id} was not found.", details={"employee_id": employee_id})
    assert_schedule_editable(session, [start], location=location, policy=policy)
    assignment = add_team_assignment(employee_session, employee_id, new_team.value, start, created_by=actor)
    _cache(cache).clear()
    logger.info("%s moved employee %s to team %s from %s", actor, employee_id, new_team.value, start.isoformat())
    return assignment


# ---------------------------------------------------------------------------
# Locks and week approval


def get_week_status(
    session,
    week_start,
    *,
    location: Optional[str] = None,
    policy: Optional[Dict] = None,
) -> Dict[str, Any]:
    policy = policy_for_session(session, policy)
    scope = _scope(location, policy)
    start = normalize_week_start(week_start, week_start_weekday(policy))
    row = get_week_status_row(session, start, scope)
    lock = get_active_lock(session, LockScope.WEEK, start, scope)
    dates = [start + datetime.timedelta(days=offset) for offset in range(7)]
    return {
        "week_start": start.isoformat(),
        "location": scope,
        "status": row.status if row else WeekStatus.DRAFT.value,
        "approved_by": row.approved_by if row else None,
        "approved_at": row.approved_at.isoformat() if row and row.approved_at else None,
        "locked": lock is not None,
        "locked_by": lock.locked_by if lock else None,
        "locked_days": [day_lock.scope_value.isoformat() for day_lock in list_active_day_locks(session, dates, scope)],
    }


def approve_week(session, week_start, *, actor: str, location: Optional[str] = None, policy: Optional[Dict] = None):
    policy = policy_for_session(session, policy)
    start = normalize_week_start(week_start, week_start_weekday(policy))
    row = set_week_status(session, start, WeekStatus.APPROVED.value, location=_scope(location, policy), actor=actor)
    logger.info("%s approved week %s", actor, start.isoformat())
    return row


def unapprove_week(session, week_start, *, actor: str, location: Optional[str] = None, policy: Optional[Dict] = None):
    policy = policy_for_session(session, policy)
    scope = _scope(location, policy)
    start = normalize_week_start(week_start, week_start_weekday(policy))
    if get_active_lock(session, LockScope.WEEK, start, scope) is not None:
        raise ScheduleLockedError(
            f"Week starting {start.isoformat()} is locked.",
            code="WEEK_LOCKED",
            details={"week_start": start.isoformat(), "location": scope},
        )
    row = set_week_status(session, start, WeekStatus.DRAFT.value, location=scope)
    logger.info("%s returned week %s to draft", actor, start.isoformat())
    return row


def lock_week(
    session,
    week_start,
    *,
    actor: str,
    location: Optional[str] = None,
    reason: str = "",
    allow_draft: bool = False,
    policy: Optional[Dict] = None,
):
    policy = policy_for_session(session, policy)
    scope = _scope(location, policy)
    start = normalize_week_start(week_start, week_start_weekday(policy))
    if not allow_draft:
        row = get_week_status_row(session, start, scope)
        if row is None or row.status != WeekStatus.APPROVED.value:
            raise InvalidInputError(
                f"Week starting {start.isoformat()} must be approved before it is locked.",
                code="WEEK_NOT_APPROVED",
                details={"week_start": start.isoformat()},
            )
    lock = create_lock(session, LockScope.WEEK, start, location=scope, locked_by=actor, reason=reason)
    logger.info("%s locked week %s", actor, start.isoformat())
    return lock


def unlock_week(session, week_start, *, actor: str, location: Optional[str] = None, policy: Optional[Dict] = None) -> int:
    policy = policy_for_session(session, policy)
    start = normalize_week_start(week_start, week_start_weekday(policy))
    revoked = revoke_lock(session, LockScope.WEEK, start, location=_scope(location, policy), revoked_by=actor)
    logger.info("%s unlocked week %s", actor, start.isoformat())
    return revoked


def lock_day(
    session,
    date_value,
    *,
    actor: str,
    location: Optional[str] = None,
    reason: str = "",
    policy: Optional[Dict] = None,
):
    policy = policy_for_session(session, policy)
    date_ = parse_iso_date(date_value)
    lock = create_lock(session, LockScope.DAY, date_, location=_scope(location, policy), locked_by=actor, reason=reason)
    logger.info("%s locked day %s", actor, date_.isoformat())
    return lock


def unlock_day(session, date_value, *, actor: str, location: Optional[str] = None, policy: Optional[Dict] = None) -> int:
    policy = policy_for_session(session, policy)
    date_ = parse_iso_date(date_value)
    revoked = revoke_lock(session, LockScope.DAY, date_, location=_scope(location, policy), revoked_by=actor)
    logger.info("%s unlocked day %s", actor, date_.isoformat())
    return revoked


# ---------------------------------------------------------------------------
# Availability and coverage-rule writes


def _date_span(start: datetime.date, end: datetime.date) -> list:
    return [start + datetime.timedelta(days=offset) for offset in range((end - start).days + 1)]


def record_leave(
    employee_session,
    employee_id: int,
    start_value,
    end_value,
    *,
    status: str = "APPROVED",
    notes: str = "",
    cache: Optional[ValidationCache] = None,
):
    start = parse_iso_date(start_value)
    end = parse_iso_date(end_value)
    if end < start:
        raise InvalidInputError("Leave end date must not precede its start date.")
    if get_employee(employee_session, employee_id) is None:
        raise NotFoundError(f"Employee {employee_id} was not found.", details={"employee_id": employee_id})
    try:
        leave = add_leave(employee_session, employee_id, start, end, status=status, notes=notes)
    except ValueError as exc:
        raise InvalidInputError(str(exc), details={"status": status}) from exc
    _cache(cache).invalidate(_date_span(start, end))
    logger.info("Recorded %s leave for employee %s from %s to %s", leave.status, employee_id, start, end)
    return leave


def record_absence(
    employee_session,
    employee_id: int,
    date_value,
    *,
    location: Optional[str] = None,
    cache: Optional[ValidationCache] = None,
):
    date_ = parse_iso_date(date_value)
    if get_employee(employee_session, employee_id) is None:
        raise NotFoundError(f"Employee {employee_id} was not found.", details={"employee_id": employee_id})
    mark = add_absence_mark(employee_session, employee_id, date_, location=location)
    _cache(cache).invalidate([date_])
    logger.info("Marked employee %s absent on %s", employee_id, date_.isoformat())
    return mark


def save_coverage_rule(
    session,
    day_of_week: int,
    min_am: int,
    min_pm: int,
    *,
    enabled: bool = True,
    cache: Optional[ValidationCache] = None,
):
    try:
        rule = upsert_coverage_rule(session, int(day_of_week), int(min_am), int(min_pm), enabled=enabled)
    except ValueError as exc:
        raise InvalidInputError(str(exc), details={"day_of_week": day_of_week}) from exc
    # Every date on that weekday is affected.
    _cache(cache).clear()
    logger.info("Coverage rule for weekday %s set to AM %s / PM %s", day_of_week, min_am, min_pm)
    return rule
