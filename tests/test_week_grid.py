from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from database import add_leave, add_team_assignment, upsert_override  # noqa: E402
from errors import InvalidInputError, NotFoundError  # noqa: E402
from scheduling.counts import DayCounts, compute_day_counts  # noqa: E402
from scheduling.grid import build_week_grid  # noqa: E402
from shifts import Availability, ShiftKind, Team  # noqa: E402
from validation import validate_grid  # noqa: E402

WEEK_START = datetime.date(2024, 1, 6)
MONDAY = datetime.date(2024, 1, 8)
TUESDAY = datetime.date(2024, 1, 9)
FRIDAY = datetime.date(2024, 1, 12)
HOME = "Main Boutique"
KIOSK = "Mall Kiosk"


def _grid(memory_db, week=WEEK_START, **kwargs):
    return build_week_grid(
        memory_db["session"],
        week,
        employee_session=memory_db["employee_session"],
        **kwargs,
    )


def _cell(grid, employee_id, date_):
    for row in grid.rows:
        if row.employee_id == employee_id:
            return row.cell_for(date_)
    raise AssertionError(f"employee {employee_id} not in grid")


def test_grid_rows_sorted_by_team_then_name(memory_db, make_employee):
    make_employee("zara", team="B")
    make_employee("Bilal", team="A")
    make_employee("amal", team="A")
    make_employee("Dana", team="B")

    grid = _grid(memory_db, week=TUESDAY)

    assert grid.week_start == WEEK_START
    assert [row.name for row in grid.rows] == ["amal", "Bilal", "Dana", "zara"]
    assert [day.date for day in grid.days][0] == WEEK_START
    assert len(grid.days) == 7


def test_inactive_and_system_accounts_are_left_off(memory_db, make_employee):
    make_employee("Aisha")
    make_employee("Former", status="inactive")
    make_employee("Store System", system_only=True)

    grid = _grid(memory_db)

    assert [row.name for row in grid.rows] == ["Aisha"]


def test_leave_hides_override_and_counts(memory_db, make_employee):
    session, employee_session = memory_db["session"], memory_db["employee_session"]
    employee = make_employee("Aisha", team="A")
    add_leave(employee_session, employee.id, TUESDAY, TUESDAY)
    upsert_override(session, employee.id, TUESDAY, ShiftKind.EVENING.value)

    grid = _grid(memory_db)
    cell = _cell(grid, employee.id, TUESDAY)

    assert cell.availability is Availability.LEAVE
    assert cell.effective_shift is ShiftKind.NONE
    assert cell.override_id is None
    assert grid.counts[grid.day_index(TUESDAY)] == DayCounts()


def test_override_replaces_rotation_shift(memory_db, make_employee):
    session = memory_db["session"]
    employee = make_employee("Aisha", team="A")
    override = upsert_override(session, employee.id, TUESDAY, ShiftKind.COVER_EXT_AM.value)

    grid = _grid(memory_db)
    cell = _cell(grid, employee.id, TUESDAY)

    assert cell.base_shift is ShiftKind.MORNING
    assert cell.effective_shift is ShiftKind.COVER_EXT_AM
    assert cell.override_id == override.id
    assert grid.counts[grid.day_index(TUESDAY)] == DayCounts(ext_am=1)


def test_counts_match_cell_totals(memory_db, make_employee):
    for name, team in (("A1", "A"), ("A2", "A"), ("B1", "B"), ("B2", "B"), ("B3", "B")):
        make_employee(name, team=team)

    grid = _grid(memory_db)

    for index, day in enumerate(grid.days):
        assert grid.counts[index] == compute_day_counts(row.cells[index] for row in grid.rows)
    tuesday = grid.counts[grid.day_index(TUESDAY)]
    assert (tuesday.am, tuesday.pm) == (2, 3)
    friday = grid.counts[grid.day_index(FRIDAY)]
    assert (friday.am, friday.pm) == (0, 5)
    sunday = grid.counts[grid.day_index(datetime.date(2024, 1, 7))]
    assert sunday.total == 0


def test_team_filter_and_employee_filter(memory_db, make_employee):
    a = make_employee("Aisha", team="A")
    make_employee("Yusuf", team="B")

    team_grid = _grid(memory_db, team="b")
    assert [row.name for row in team_grid.rows] == ["Yusuf"]
    assert team_grid.counts[team_grid.day_index(TUESDAY)] == DayCounts(pm=1)

    single = _grid(memory_db, employee_id=a.id)
    assert [row.employee_id for row in single.rows] == [a.id]


def test_bad_filters_are_rejected(memory_db, make_employee):
    make_employee("Aisha")
    with pytest.raises(InvalidInputError):
        _grid(memory_db, team="C")
    with pytest.raises(InvalidInputError):
        _grid(memory_db, location="Nowhere")
    with pytest.raises(NotFoundError):
        _grid(memory_db, employee_id=999)
    with pytest.raises(InvalidInputError):
        _grid(memory_db, week="2024-13-01")


def test_mid_week_team_change_is_resolved_per_day(memory_db, make_employee):
    employee_session = memory_db["employee_session"]
    employee = make_employee("Huda", team="A")
    add_team_assignment(employee_session, employee.id, "B", TUESDAY)

    grid = _grid(memory_db)
    row = grid.rows[0]

    assert row.team is Team.A
    assert row.cell_for(MONDAY).base_shift is ShiftKind.MORNING
    assert row.cell_for(TUESDAY).base_shift is ShiftKind.EVENING


def test_guests_count_toward_location_totals(memory_db, make_employee):
    session = memory_db["session"]
    make_employee("Aisha", team="A", location=HOME)
    make_employee("Yusuf", team="B", location=HOME)
    guest = make_employee("Rania", team="A", location=KIOSK)
    upsert_override(session, guest.id, TUESDAY, ShiftKind.EVENING.value, location=HOME)

    grid = _grid(memory_db, location=HOME)
    assert [row.name for row in grid.rows] == ["Aisha", "Yusuf"]
    assert grid.counts[grid.day_index(TUESDAY)] == DayCounts(am=1, pm=2)
    assert grid.counts[grid.day_index(MONDAY)] == DayCounts(am=1, pm=1)

    with_guests = _grid(memory_db, location=HOME, include_guests=True)
    guest_row = with_guests.rows[-1]
    assert guest_row.is_guest and guest_row.employee_id == guest.id
    assert guest_row.cell_for(MONDAY).effective_shift is ShiftKind.NONE
    assert guest_row.cell_for(TUESDAY).effective_shift is ShiftKind.EVENING

    filtered = _grid(memory_db, location=HOME, team="A")
    assert filtered.counts[filtered.day_index(TUESDAY)] == DayCounts(am=1)

    kiosk = _grid(memory_db, location=KIOSK)
    assert [row.name for row in kiosk.rows] == ["Rania"]


def test_special_day_am_is_counted_and_flagged(memory_db, make_employee):
    session = memory_db["session"]
    employee = make_employee("Aisha", team="A")
    make_employee("Yusuf", team="B")
    upsert_override(session, employee.id, FRIDAY, ShiftKind.MORNING.value)

    grid = _grid(memory_db)
    index = grid.day_index(FRIDAY)

    assert grid.days[index].is_special_day
    assert grid.days[index].min_am == 0
    assert grid.counts[index] == DayCounts(am=1, pm=1)
    assert [warning.message for warning in grid.integrity_warnings] == [
        "Special-day AM present: Aisha on 2024-01-12"
    ]
    results = validate_grid(grid)[FRIDAY]
    assert [result.type.value for result in results] == ["SPECIAL_DAY_AM_PRESENT"]


def test_grid_serializes_to_plain_dict(memory_db, make_employee):
    make_employee("Aisha", team="A")

    payload = _grid(memory_db).to_dict()

    assert payload["week_start"] == "2024-01-06"
    assert payload["rows"][0]["cells"][3]["effective_shift"] == "MORNING"
    assert payload["days"][6]["is_special_day"] is True
    assert len(payload["counts"]) == 7
