from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List

from sqlalchemy import select

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import (  # noqa: E402
    Employee,
    EmployeeSessionLocal,
    SessionLocal,
    init_database,
    list_employees,
    upsert_coverage_rule,
)
from policy import ensure_default_policy  # noqa: E402
from shifts import Team  # noqa: E402


DAY_INDEX = {
    "Mon": 0,
    "Tue": 1,
    "Wed": 2,
    "Thu": 3,
    "Fri": 4,
    "Sat": 5,
    "Sun": 6,
}

DEFAULT_COVERAGE: Dict[str, Dict[str, int]] = {
    "Sat": {"min_am": 2, "min_pm": 3},
    "Sun": {"min_am": 2, "min_pm": 2},
    "Mon": {"min_am": 2, "min_pm": 2},
    "Tue": {"min_am": 2, "min_pm": 2},
    "Wed": {"min_am": 2, "min_pm": 2},
    "Thu": {"min_am": 2, "min_pm": 3},
    "Fri": {"min_am": 0, "min_pm": 3},
}

SAMPLE_EMPLOYEES: List[Dict] = [
    # Team A
    {"name": "Aisha Rahman", "team": "A", "off": "Sun"},
    {"name": "Layla Haddad", "team": "A", "off": "Mon"},
    {"name": "Omar Saleh", "team": "A", "off": "Tue"},
    {"name": "Nora Aziz", "team": "A", "off": "Wed"},
    # Team B
    {"name": "Yusuf Karim", "team": "B", "off": "Sun"},
    {"name": "Mariam Nasser", "team": "B", "off": "Mon"},
    {"name": "Sami Othman", "team": "B", "off": "Thu"},
    {"name": "Huda Farouk", "team": "B", "off": "Sat"},
    # Back-office account that should never appear on the roster
    {"name": "Store System", "team": "A", "off": "Fri", "system_only": True},
]


def seed_employees(location: str) -> None:
    created = 0
    refreshed = 0
    with EmployeeSessionLocal() as session:
        for entry in SAMPLE_EMPLOYEES:
            team = Team(entry["team"]).value
            off_day = DAY_INDEX[entry["off"]]
            stmt = select(Employee).where(Employee.full_name == entry["name"])
            employee = session.scalars(stmt).first()
            if not employee:
                employee = Employee(full_name=entry["name"])
                session.add(employee)
                created += 1
            else:
                refreshed += 1
            employee.default_team = team
            employee.weekly_off_day = off_day
            employee.status = entry.get("status", "active")
            employee.system_only = bool(entry.get("system_only", False))
            employee.location = location
        session.commit()
    print(f"[seed] Created {created} employees, refreshed {refreshed} profiles at '{location}'.")


def seed_coverage_rules() -> None:
    with SessionLocal() as session:
        for day_name, minimums in DEFAULT_COVERAGE.items():
            upsert_coverage_rule(session, DAY_INDEX[day_name], minimums["min_am"], minimums["min_pm"])
    print(f"[seed] Stored {len(DEFAULT_COVERAGE)} coverage rules.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed a demo boutique roster, coverage rules and policy.")
    parser.add_argument("--location", default="Main Boutique", help="Home location for the seeded employees.")
    parser.add_argument("--skip-rules", action="store_true", help="Leave coverage rules untouched.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_database()
    ensure_default_policy(SessionLocal)
    seed_employees(args.location)
    if not args.skip_rules:
        seed_coverage_rules()
    for employee in list_employees():
        print(f"[seed]   {employee['full_name']:<20} team {employee['default_team']}  off {employee['weekly_off_day']}")
    print("[seed] Seed complete.")


if __name__ == "__main__":
    main()
