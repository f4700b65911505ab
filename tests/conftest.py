from __future__ import annotations

import datetime
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database as db  # noqa: E402
from database import Base, Employee, EmployeeBase, PolicyBase  # noqa: E402
from policy import resolve_policy  # noqa: E402
import validation  # noqa: E402

# Saturday 2024-01-06 is the first week start of 2024, so this week has index 0.
WEEK_START = datetime.date(2024, 1, 6)
TUESDAY = datetime.date(2024, 1, 9)
WEDNESDAY = datetime.date(2024, 1, 10)
FRIDAY = datetime.date(2024, 1, 12)
SUNDAY = 6
HOME = "Main Boutique"


def _memory_engine():
    return create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture()
def memory_db(monkeypatch):
    """Separate in-memory engines for the roster, schedule and policy databases."""
    schedule_engine = _memory_engine()
    employee_engine = _memory_engine()
    policy_engine = _memory_engine()
    Session = sessionmaker(bind=schedule_engine, expire_on_commit=False, future=True)
    EmployeeSession = sessionmaker(bind=employee_engine, expire_on_commit=False, future=True)
    PolicySession = sessionmaker(bind=policy_engine, expire_on_commit=False, future=True)

    monkeypatch.setattr(db, "schedule_engine", schedule_engine)
    monkeypatch.setattr(db, "employee_engine", employee_engine)
    monkeypatch.setattr(db, "policy_engine", policy_engine)
    monkeypatch.setattr(db, "SessionLocal", Session)
    monkeypatch.setattr(db, "EmployeeSessionLocal", EmployeeSession)
    monkeypatch.setattr(db, "PolicySessionLocal", PolicySession)

    Base.metadata.create_all(schedule_engine)
    EmployeeBase.metadata.create_all(employee_engine)
    PolicyBase.metadata.create_all(policy_engine)
    validation.validation_cache.clear()

    session = Session()
    employee_session = EmployeeSession()
    try:
        yield {
            "session": session,
            "employee_session": employee_session,
            "Session": Session,
            "EmployeeSession": EmployeeSession,
            "PolicySession": PolicySession,
        }
    finally:
        session.close()
        employee_session.close()
        validation.validation_cache.clear()
        schedule_engine.dispose()
        employee_engine.dispose()
        policy_engine.dispose()


@pytest.fixture()
def make_employee(memory_db):
    employee_session = memory_db["employee_session"]

    def _make(
        name: str,
        team: str = "A",
        *,
        off_day: int = SUNDAY,
        location: str = HOME,
        status: str = "active",
        system_only: bool = False,
    ) -> Employee:
        employee = Employee(
            full_name=name,
            default_team=team,
            weekly_off_day=off_day,
            location=location,
            status=status,
            system_only=system_only,
        )
        employee_session.add(employee)
        employee_session.commit()
        return employee

    return _make


@pytest.fixture()
def policy():
    return resolve_policy(None)
