from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import add_leave, get_override  # noqa: E402
from errors import (  # noqa: E402
    InvalidInputError,
    NotFoundError,
    ScheduleLockedError,
    SchedulingError,
    StaleSuggestionConflict,
)
from schedule_apply import (  # noqa: E402
    apply_grid_changes,
    apply_override_change,
    apply_suggestion,
    apply_team_change,
    approve_week,
    clear_override,
    get_week_status,
    lock_day,
    lock_week,
    record_absence,
    record_leave,
    save_coverage_rule,
    unapprove_week,
    unlock_day,
    unlock_week,
)
from scheduling.availability import resolve_availability  # noqa: E402
from scheduling.counts import DayCounts  # noqa: E402
from scheduling.grid import build_week_grid  # noqa: E402
from scheduling.suggestions import suggest_for_week  # noqa: E402
from scheduling.teams import resolve_team  # noqa: E402
from shifts import Availability, ShiftKind, Team  # noqa: E402
from validation import ValidationCache  # noqa: E402

WEEK_START = datetime.date(2024, 1, 6)
TUESDAY = datetime.date(2024, 1, 9)
WEDNESDAY = datetime.date(2024, 1, 10)
FRIDAY = datetime.date(2024, 1, 12)


@pytest.fixture()
def staff(make_employee):
    return {
        "amal": make_employee("Amal", team="A"),
        "bushra": make_employee("Bushra", team="A"),
        "jana": make_employee("Jana", team="B"),
        "lina": make_employee("Lina", team="B"),
    }


@pytest.fixture()
def cache():
    return ValidationCache(ttl_seconds=60)


def _tuesday_counts(memory_db) -> DayCounts:
    grid = build_week_grid(memory_db["session"], WEEK_START, employee_session=memory_db["employee_session"])
    return grid.counts[grid.day_index(TUESDAY)]


def test_override_change_writes_and_invalidates(memory_db, staff, cache):
    session = memory_db["session"]
    cache.set(TUESDAY, None, [])
    cache.set(WEDNESDAY, None, [])

    override = apply_override_change(
        session,
        staff["amal"].id,
        "2024-01-09",
        "pm",
        actor="manager",
        reason="Delivery",
        employee_session=memory_db["employee_session"],
        cache=cache,
    )

    assert override.shift is ShiftKind.EVENING
    assert override.created_by == "manager"
    assert cache.get(TUESDAY) is None
    assert cache.get(WEDNESDAY) == []
    assert _tuesday_counts(memory_db) == DayCounts(am=1, pm=3)

    assert clear_override(session, staff["amal"].id, TUESDAY, cache=cache) is True
    assert clear_override(session, staff["amal"].id, TUESDAY, cache=cache) is False
    assert _tuesday_counts(memory_db) == DayCounts(am=2, pm=2)


def test_special_day_am_is_refused(memory_db, staff, cache):
    for shift in ("MORNING", "COVER_EXT_AM"):
        with pytest.raises(InvalidInputError) as excinfo:
            apply_override_change(
                memory_db["session"],
                staff["jana"].id,
                FRIDAY,
                shift,
                employee_session=memory_db["employee_session"],
                cache=cache,
            )
        assert excinfo.value.code == "SPECIAL_DAY_AM_NOT_ALLOWED"
    assert get_override(memory_db["session"], staff["jana"].id, FRIDAY) is None


def test_unknown_employee_or_shift_is_rejected(memory_db, staff, cache):
    with pytest.raises(NotFoundError):
        apply_override_change(
            memory_db["session"], 999, TUESDAY, "PM", employee_session=memory_db["employee_session"], cache=cache
        )
    with pytest.raises(InvalidInputError):
        apply_override_change(
            memory_db["session"],
            staff["amal"].id,
            TUESDAY,
            "NIGHT",
            employee_session=memory_db["employee_session"],
            cache=cache,
        )


def test_week_must_be_approved_before_locking(memory_db, staff, cache):
    session = memory_db["session"]
    with pytest.raises(InvalidInputError) as excinfo:
        lock_week(session, TUESDAY, actor="manager")
    assert excinfo.value.code == "WEEK_NOT_APPROVED"

    approve_week(session, TUESDAY, actor="manager")
    lock_week(session, TUESDAY, actor="manager", reason="Payroll")
    status = get_week_status(session, WEEK_START)
    assert status["status"] == "APPROVED"
    assert status["approved_by"] == "manager"
    assert status["locked"] is True

    with pytest.raises(ScheduleLockedError) as excinfo:
        apply_override_change(
            session, staff["amal"].id, TUESDAY, "PM", employee_session=memory_db["employee_session"], cache=cache
        )
    assert excinfo.value.code == "WEEK_LOCKED"
    with pytest.raises(ScheduleLockedError):
        unapprove_week(session, WEEK_START, actor="manager")

    assert unlock_week(session, WEEK_START, actor="manager") == 1
    apply_override_change(
        session, staff["amal"].id, TUESDAY, "PM", employee_session=memory_db["employee_session"], cache=cache
    )
    unapprove_week(session, WEEK_START, actor="manager")
    assert get_week_status(session, WEEK_START)["status"] == "DRAFT"


def test_day_lock_only_blocks_that_day(memory_db, staff, cache):
    session = memory_db["session"]
    lock_day(session, TUESDAY, actor="manager")
    assert get_week_status(session, WEEK_START)["locked_days"] == ["2024-01-09"]

    with pytest.raises(ScheduleLockedError) as excinfo:
        apply_override_change(
            session, staff["amal"].id, TUESDAY, "PM", employee_session=memory_db["employee_session"], cache=cache
        )
    assert excinfo.value.code == "DAY_LOCKED"
    apply_override_change(
        session, staff["amal"].id, WEDNESDAY, "PM", employee_session=memory_db["employee_session"], cache=cache
    )

    unlock_day(session, TUESDAY, actor="manager")
    apply_override_change(
        session, staff["amal"].id, TUESDAY, "PM", employee_session=memory_db["employee_session"], cache=cache
    )


def test_grid_save_back_to_rotation_removes_override(memory_db, staff, cache):
    session = memory_db["session"]
    apply_override_change(
        session, staff["amal"].id, TUESDAY, "PM", employee_session=memory_db["employee_session"], cache=cache
    )

    outcome = apply_grid_changes(
        session,
        [
            {
                "employee_id": staff["amal"].id,
                "date": "2024-01-09",
                "shift": "MORNING",
                "original_effective_shift": "EVENING",
            }
        ],
        employee_session=memory_db["employee_session"],
        cache=cache,
    )

    assert outcome["reverted"] == 1
    assert get_override(session, staff["amal"].id, TUESDAY).is_active is False
    grid = build_week_grid(session, WEEK_START, employee_session=memory_db["employee_session"])
    cell = grid.rows[0].cell_for(TUESDAY)
    assert (cell.effective_shift, cell.override_id) == (ShiftKind.MORNING, None)


def test_grid_save_reports_each_change(memory_db, staff, cache):
    session, employee_session = memory_db["session"], memory_db["employee_session"]
    add_leave(employee_session, staff["bushra"].id, WEDNESDAY, WEDNESDAY)

    outcome = apply_grid_changes(
        session,
        [
            {"employee_id": staff["jana"].id, "date": "2024-01-09", "shift": "am"},
            {"employee_id": staff["lina"].id, "date": "2024-01-12", "shift": "MORNING"},
            {"employee_id": staff["bushra"].id, "date": "2024-01-09", "shift": "MORNING"},
            {"employee_id": staff["bushra"].id, "date": "2024-01-10", "shift": "EVENING"},
        ],
        actor="manager",
        employee_session=employee_session,
        cache=cache,
    )

    assert (outcome["applied"], outcome["unchanged"], outcome["total"]) == (1, 1, 4)
    assert outcome["skipped"] == [
        {"employee_id": staff["lina"].id, "date": "2024-01-12", "reason": "SPECIAL_DAY_AM_NOT_ALLOWED"},
        {"employee_id": staff["bushra"].id, "date": "2024-01-10", "reason": "LEAVE"},
    ]
    assert get_override(session, staff["jana"].id, TUESDAY).shift is ShiftKind.MORNING
    assert get_override(session, staff["lina"].id, FRIDAY) is None


def test_grid_save_with_stale_original_writes_nothing(memory_db, staff, cache):
    session = memory_db["session"]
    with pytest.raises(StaleSuggestionConflict):
        apply_grid_changes(
            session,
            [
                {"employee_id": staff["jana"].id, "date": "2024-01-09", "shift": "MORNING"},
                {
                    "employee_id": staff["amal"].id,
                    "date": "2024-01-09",
                    "shift": "NONE",
                    "original_effective_shift": "EVENING",
                },
            ],
            employee_session=memory_db["employee_session"],
            cache=cache,
        )
    assert get_override(session, staff["jana"].id, TUESDAY) is None
    assert get_override(session, staff["amal"].id, TUESDAY) is None


def test_applying_a_suggestion_rebalances_the_day(memory_db, make_employee, cache):
    session, employee_session = memory_db["session"], memory_db["employee_session"]
    for name in ("Amal", "Bushra", "Dalia", "Farah", "Hind"):
        make_employee(name, team="A")
    for name in ("Jana", "Lina", "Maha"):
        make_employee(name, team="B")
    suggestion = next(
        item for item in suggest_for_week(session, WEEK_START, employee_session=employee_session) if item.date == TUESDAY
    )

    with pytest.raises(StaleSuggestionConflict):
        apply_suggestion(
            session,
            suggestion.id,
            TUESDAY,
            expected_before={"am": 5, "pm": 2, "ext_am": 0, "ext_pm": 0},
            employee_session=employee_session,
            cache=cache,
        )

    applied = apply_suggestion(
        session,
        suggestion.id,
        TUESDAY,
        expected_before=suggestion.before_counts.to_dict(),
        actor="manager",
        employee_session=employee_session,
        cache=cache,
    )

    assert applied.id == suggestion.id
    counts = _tuesday_counts(memory_db)
    assert counts == DayCounts(am=4, pm=4)
    with pytest.raises(StaleSuggestionConflict):
        apply_suggestion(session, suggestion.id, TUESDAY, employee_session=employee_session, cache=cache)


def test_suggestion_on_locked_week_is_refused(memory_db, make_employee, cache):
    session, employee_session = memory_db["session"], memory_db["employee_session"]
    for name in ("Amal", "Bushra", "Dalia"):
        make_employee(name, team="A")
    make_employee("Jana", team="B")
    suggestion = next(
        item for item in suggest_for_week(session, WEEK_START, employee_session=employee_session) if item.date == TUESDAY
    )
    lock_week(session, WEEK_START, actor="manager", allow_draft=True)

    with pytest.raises(ScheduleLockedError):
        apply_suggestion(session, suggestion.id, WEEK_START, employee_session=employee_session, cache=cache)


def test_team_change_is_never_retroactive(memory_db, staff, cache):
    session, employee_session = memory_db["session"], memory_db["employee_session"]
    today = datetime.date(2024, 1, 10)

    with pytest.raises(InvalidInputError):
        apply_team_change(employee_session, session, staff["amal"].id, "B", "2024-01-05", today=today, cache=cache)
    with pytest.raises(InvalidInputError):
        apply_team_change(employee_session, session, staff["amal"].id, "C", "2024-01-20", today=today, cache=cache)
    with pytest.raises(NotFoundError):
        apply_team_change(employee_session, session, 999, "B", "2024-01-20", today=today, cache=cache)

    cache.set(TUESDAY, None, [])
    assignment = apply_team_change(
        employee_session, session, staff["amal"].id, "b", "2024-01-20", today=today, actor="manager", cache=cache
    )

    assert assignment.team == "B"
    assert len(cache) == 0
    assert resolve_team(employee_session, staff["amal"].id, datetime.date(2024, 1, 19)) is Team.A
    assert resolve_team(employee_session, staff["amal"].id, datetime.date(2024, 1, 20)) is Team.B


def test_leave_absence_and_rule_writes(memory_db, staff, cache):
    session, employee_session = memory_db["session"], memory_db["employee_session"]

    with pytest.raises(InvalidInputError):
        record_leave(employee_session, staff["amal"].id, "2024-01-10", "2024-01-09", cache=cache)
    record_leave(employee_session, staff["amal"].id, "2024-01-09", "2024-01-10", cache=cache)
    record_absence(employee_session, staff["jana"].id, TUESDAY, location="Main Boutique", cache=cache)

    assert resolve_availability(employee_session, staff["amal"].id, WEDNESDAY) is Availability.LEAVE
    assert resolve_availability(employee_session, staff["jana"].id, TUESDAY, "Main Boutique") is Availability.ABSENT
    assert _tuesday_counts(memory_db) == DayCounts(am=1, pm=1)

    with pytest.raises(InvalidInputError):
        save_coverage_rule(session, 9, 1, 1, cache=cache)
    rule = save_coverage_rule(session, TUESDAY.weekday(), 3, 4, cache=cache)
    assert (rule.min_am, rule.min_pm) == (3, 4)


def test_errors_serialize_for_callers():
    error = ScheduleLockedError("Day 2024-01-09 is locked.", code="DAY_LOCKED", details={"dates": ["2024-01-09"]})
    assert isinstance(error, SchedulingError)
    assert error.to_dict() == {
        "message": "Day 2024-01-09 is locked.",
        "code": "DAY_LOCKED",
        "details": {"dates": ["2024-01-09"]},
        "exception_type": "ScheduleLockedError",
    }
    assert StaleSuggestionConflict("gone").code == "STALE_SUGGESTION"
    with pytest.raises(ValueError):
        ScheduleLockedError("nope", code="MONTH_LOCKED")
