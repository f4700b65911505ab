from __future__ import annotations

import csv
import datetime
import json
import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from database import get_policies, upsert_override, upsert_policy  # noqa: E402
from errors import InvalidInputError  # noqa: E402
from exporter import export_month, export_week_grid  # noqa: E402
from policy import (  # noqa: E402
    BASELINE_POLICY,
    build_default_policy,
    ensure_default_policy,
    exception_window_for,
    is_restricted_special_day,
    load_active_policy,
    min_floors,
    resolve_policy,
)
from scheduling.grid import build_week_grid  # noqa: E402
from scheduling.month import build_month  # noqa: E402
from shifts import ShiftKind  # noqa: E402

WEEK_START = datetime.date(2024, 1, 6)
FRIDAY = datetime.date(2024, 1, 12)


def test_missing_policy_falls_back_to_baseline():
    policy = load_active_policy(None)
    assert policy["week_start_weekday"] == 5
    assert policy["special_weekday"] == 4
    assert min_floors(policy) == (2, 2)
    assert policy["exception_windows"] == []


def test_default_policy_is_a_copy():
    policy = build_default_policy()
    policy["floors"]["am"] = 9
    assert BASELINE_POLICY["floors"]["am"] == 2


def test_ensure_default_policy_seeds_once(memory_db):
    ensure_default_policy(memory_db["PolicySession"])
    ensure_default_policy(memory_db["PolicySession"])
    with memory_db["PolicySession"]() as session:
        policies = get_policies(session)
    assert [policy.name for policy in policies] == ["Boutique Rotation"]
    assert load_active_policy(memory_db["PolicySession"])["special_weekday"] == 4


def test_stored_policy_is_read_through_schedule_session(memory_db):
    with db.PolicySessionLocal() as policy_session:
        upsert_policy(policy_session, "Ramadan", {"special_weekday": 3, "floors": {"pm": 3}}, edited_by="manager")
    policy = load_active_policy(memory_db["session"])
    assert policy["special_weekday"] == 3
    assert min_floors(policy) == (2, 3)


@pytest.mark.parametrize(
    "payload",
    [
        {"special_weekday": 7},
        {"week_start_weekday": "Saturday"},
        {"floors": {"am": -1}},
        {"exception_windows": [{"start": "2024-03-10", "end": "2024-03-01"}]},
        {"exception_windows": ["2024-03-10"]},
    ],
)
def test_bad_policy_values_are_rejected(payload):
    with pytest.raises(InvalidInputError):
        resolve_policy(payload)


def test_exception_window_lookup():
    policy = resolve_policy(
        {"exception_windows": [{"label": "Eid", "start": "2024-04-10", "end": "2024-04-12"}]}
    )
    assert exception_window_for(policy, datetime.date(2024, 4, 12))["label"] == "Eid"
    assert exception_window_for(policy, datetime.date(2024, 4, 13)) is None
    assert not is_restricted_special_day(policy, datetime.date(2024, 4, 12))
    assert is_restricted_special_day(policy, datetime.date(2024, 4, 19))


def test_week_export_writes_csv_and_json(memory_db, make_employee, tmp_path):
    employee = make_employee("Amal", team="A")
    make_employee("Jana", team="B")
    upsert_override(memory_db["session"], employee.id, FRIDAY, ShiftKind.MORNING.value)
    grid = build_week_grid(memory_db["session"], WEEK_START, employee_session=memory_db["employee_session"])

    csv_path = export_week_grid(grid, "csv", directory=tmp_path)
    with csv_path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert rows[0][:4] == ["employee_id", "name", "team", "guest"]
    assert rows[0][4] == "2024-01-06"
    assert rows[1][1] == "Amal"
    assert rows[1][-1] == "AM"
    assert rows[-4][1] == "AM"

    json_path = export_week_grid(grid, "JSON", directory=tmp_path)
    payload = json.loads(json_path.read_text(encoding="utf-8"))
    assert payload["week_start"] == "2024-01-06"
    assert payload["integrity_warnings"][0]["type"] == "SPECIAL_DAY_AM_PRESENT"
    assert "generated_at" in payload


def test_month_export_and_format_check(memory_db, make_employee, tmp_path):
    make_employee("Amal", team="A")
    rollup = build_month(memory_db["session"], "2024-02", employee_session=memory_db["employee_session"])

    path = export_month(rollup, "csv", directory=tmp_path)
    with path.open(newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))
    assert len(rows) == 30
    assert rows[1][0] == "2024-02-01"
    assert rows[1][-1] == "MIN_PM"

    with pytest.raises(ValueError):
        export_month(rollup, "xlsx", directory=tmp_path)
