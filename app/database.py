from __future__ import annotations

import datetime
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    func,
    select,
    text,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker

from shifts import LEAVE_STATUSES, LockScope, ShiftKind, Team, WeekStatus


DATA_DIR = Path(__file__).resolve().parent / "data"
DATA_DIR.mkdir(parents=True, exist_ok=True)
EMPLOYEE_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'employees.db').as_posix()}"
SCHEDULE_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'schedule.db').as_posix()}"
POLICY_DATABASE_URL = f"sqlite:///{(DATA_DIR / 'policy.db').as_posix()}"
WEEK_STATUS_CHOICES = {status.value for status in WeekStatus}
OVERRIDE_SHIFT_CHOICES = {shift.value for shift in ShiftKind}


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class EmployeeBase(DeclarativeBase):
    """Standalone metadata for roster tables living in employees.db."""

    pass


class PolicyBase(DeclarativeBase):
    """Standalone metadata for policy tables living in policy.db."""

    pass


class Base(DeclarativeBase):
    """Metadata for override/rule/lock tables living in schedule.db."""

    pass


class Employee(EmployeeBase):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    weekly_off_day: Mapped[int] = mapped_column(Integer, nullable=False, default=4)  # 0 = Monday
    default_team: Mapped[str] = mapped_column(String(1), nullable=False, default=Team.A.value)
    status: Mapped[str] = mapped_column(String(12), default="active", nullable=False)
    system_only: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    location: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    notes: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    team_assignments: Mapped[List["TeamAssignment"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan"
    )
    team_history: Mapped[List["TeamHistory"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan"
    )
    leaves: Mapped[List["Leave"]] = relationship(back_populates="employee", cascade="all, delete-orphan")
    absence_marks: Mapped[List["AbsenceMark"]] = relationship(
        back_populates="employee", cascade="all, delete-orphan"
    )

    @property
    def is_rosterable(self) -> bool:
        return self.status == "active" and not self.system_only


class TeamAssignment(EmployeeBase):
    __tablename__ = "team_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    team: Mapped[str] = mapped_column(String(1), nullable=False)
    effective_from: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    employee: Mapped[Employee] = relationship(back_populates="team_assignments")


class TeamHistory(EmployeeBase):
    __tablename__ = "team_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    team: Mapped[str] = mapped_column(String(1), nullable=False)
    effective_from: Mapped[datetime.date] = mapped_column(Date, nullable=False)

    employee: Mapped[Employee] = relationship(back_populates="team_history")


class Leave(EmployeeBase):
    __tablename__ = "leaves"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    end_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(12), nullable=False, default="PENDING")
    notes: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    employee: Mapped[Employee] = relationship(back_populates="leaves")


class AbsenceMark(EmployeeBase):
    __tablename__ = "absence_marks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    location: Mapped[str | None] = mapped_column(String(80), nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="absence_marks")

    __table_args__ = (
        UniqueConstraint("employee_id", "date", "location", name="uq_absence_marks_employee_date_location"),
    )


class ShiftOverride(Base):
    __tablename__ = "shift_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    employee_id: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    override_shift: Mapped[str] = mapped_column(String(16), nullable=False)
    location: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("employee_id", "date", name="uq_shift_overrides_employee_date"),
    )

    @property
    def shift(self) -> ShiftKind:
        return ShiftKind(self.override_shift)


class CoverageRule(Base):
    __tablename__ = "coverage_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)  # 0 = Monday
    min_am: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_pm: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ScheduleLock(Base):
    __tablename__ = "schedule_locks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    scope_type: Mapped[str] = mapped_column(String(8), nullable=False)
    scope_value: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    location: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    locked_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    locked_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    revoked_by: Mapped[str | None] = mapped_column(String(60), nullable=True)
    revoked_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ScheduleWeekStatus(Base):
    __tablename__ = "schedule_week_status"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_start: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    location: Mapped[str] = mapped_column(String(80), nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=WeekStatus.DRAFT.value)
    approved_by: Mapped[str | None] = mapped_column(String(60), nullable=True)
    approved_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("week_start", "location", name="uq_schedule_week_status_week_location"),
    )


class Policy(PolicyBase):
    __tablename__ = "policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    paramsJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    lastEditedBy: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    lastEditedAt: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("name", name="uq_policies_name"),
    )

    def params_dict(self) -> Dict:
        try:
            value = json.loads(self.paramsJSON or "{}")
            if isinstance(value, dict):
                return value
        except json.JSONDecodeError:
            pass
        return {}


employee_engine = create_engine(
    EMPLOYEE_DATABASE_URL,
    echo=False,
    future=True,
)
schedule_engine = create_engine(
    SCHEDULE_DATABASE_URL,
    echo=False,
    future=True,
)
policy_engine = create_engine(
    POLICY_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=schedule_engine, expire_on_commit=False, future=True)
EmployeeSessionLocal = sessionmaker(bind=employee_engine, expire_on_commit=False, future=True)
PolicySessionLocal = sessionmaker(bind=policy_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    EmployeeBase.metadata.create_all(employee_engine)
    Base.metadata.create_all(schedule_engine)
    PolicyBase.metadata.create_all(policy_engine)
    with employee_engine.begin() as conn:
        columns = {
            row[1]: True
            for row in conn.execute(text("PRAGMA table_info(employees)"))
        }
        if "system_only" not in columns:
            conn.execute(text("ALTER TABLE employees ADD COLUMN system_only BOOLEAN NOT NULL DEFAULT 0"))
        if "location" not in columns:
            conn.execute(text("ALTER TABLE employees ADD COLUMN location VARCHAR(80) NOT NULL DEFAULT ''"))
    with policy_engine.begin() as conn:
        cols = {row[1]: True for row in conn.execute(text("PRAGMA table_info(policies)"))}
        if "lastEditedBy" not in cols:
            conn.execute(text("ALTER TABLE policies ADD COLUMN lastEditedBy VARCHAR(60) NOT NULL DEFAULT 'system'"))
        if "lastEditedAt" not in cols:
            conn.execute(
                text(
                    "ALTER TABLE policies ADD COLUMN lastEditedAt DATETIME DEFAULT (datetime('now'))"
                )
            )


def _coerce_employee_session(session):
    """Return (employee_session, should_close) ensuring we talk to the employee database."""
    if session is None:
        return EmployeeSessionLocal(), True
    bind = getattr(session, "bind", None)
    if bind is schedule_engine or bind is policy_engine:
        return EmployeeSessionLocal(), True
    return session, False


def _coerce_policy_session(session):
    """Return (policy_session, should_close) ensuring policy data stays in its own database."""
    PolicyBase.metadata.create_all(policy_engine)
    if session is None:
        return PolicySessionLocal(), True
    bind = getattr(session, "bind", None)
    if bind is schedule_engine or bind is employee_engine:
        return PolicySessionLocal(), True
    return session, False


# ---------------------------------------------------------------------------
# Roster


def get_employee(employee_session, employee_id: int) -> Optional[Employee]:
    return employee_session.get(Employee, employee_id)


def list_employees(employee_session=None, only_active: bool = True) -> List[Dict[str, Any]]:
    employee_session, close_session = _coerce_employee_session(employee_session)
    try:
        stmt = select(Employee).order_by(Employee.full_name.asc(), Employee.id.asc())
        if only_active:
            stmt = stmt.where(Employee.status == "active", Employee.system_only.is_(False))
        return [
            {
                "id": employee.id,
                "full_name": employee.full_name,
                "weekly_off_day": employee.weekly_off_day,
                "default_team": employee.default_team,
                "status": employee.status,
                "location": employee.location,
            }
            for employee in employee_session.scalars(stmt)
        ]
    finally:
        if close_session:
            employee_session.close()


def eligible_employees(
    employee_session,
    *,
    employee_id: Optional[int] = None,
    location: Optional[str] = None,
) -> List[Employee]:
    """Active, non-system employees, optionally narrowed to one id or one home location."""
    stmt = select(Employee).where(Employee.status == "active", Employee.system_only.is_(False))
    if employee_id is not None:
        stmt = stmt.where(Employee.id == employee_id)
    if location is not None:
        stmt = stmt.where(Employee.location == location)
    return list(employee_session.scalars(stmt.order_by(Employee.id.asc())))


def employees_by_ids(employee_session, employee_ids: Iterable[int]) -> Dict[int, Employee]:
    ids = set(employee_ids)
    if not ids:
        return {}
    rows = employee_session.scalars(select(Employee).where(Employee.id.in_(ids)))
    return {row.id: row for row in rows}


def known_locations(session, employee_session) -> Set[str]:
    locations = set(employee_session.scalars(select(Employee.location).distinct()))
    locations.update(session.scalars(select(ShiftOverride.location).distinct()))
    locations.discard(None)
    return locations


def list_team_assignments(employee_session, employee_ids: Iterable[int], until: datetime.date) -> List[TeamAssignment]:
    stmt = (
        select(TeamAssignment)
        .where(TeamAssignment.employee_id.in_(set(employee_ids)), TeamAssignment.effective_from <= until)
        .order_by(TeamAssignment.employee_id.asc(), TeamAssignment.effective_from.asc(), TeamAssignment.id.asc())
    )
    return list(employee_session.scalars(stmt))


def list_team_history(employee_session, employee_ids: Iterable[int], until: datetime.date) -> List[TeamHistory]:
    stmt = (
        select(TeamHistory)
        .where(TeamHistory.employee_id.in_(set(employee_ids)), TeamHistory.effective_from <= until)
        .order_by(TeamHistory.employee_id.asc(), TeamHistory.effective_from.asc(), TeamHistory.id.asc())
    )
    return list(employee_session.scalars(stmt))


def add_team_assignment(
    employee_session,
    employee_id: int,
    team: str,
    effective_from: datetime.date,
    *,
    created_by: str = "system",
) -> TeamAssignment:
    assignment = TeamAssignment(
        employee_id=employee_id,
        team=team,
        effective_from=effective_from,
        created_by=created_by,
    )
    employee_session.add(assignment)
    employee_session.commit()
    employee_session.refresh(assignment)
    return assignment


def list_approved_leaves(
    employee_session,
    employee_ids: Iterable[int],
    start: datetime.date,
    end: datetime.date,
) -> List[Leave]:
    stmt = select(Leave).where(
        Leave.employee_id.in_(set(employee_ids)),
        Leave.status == "APPROVED",
        Leave.start_date <= end,
        Leave.end_date >= start,
    )
    return list(employee_session.scalars(stmt))


def list_absence_marks(
    employee_session,
    employee_ids: Iterable[int],
    start: datetime.date,
    end: datetime.date,
    *,
    location: Optional[str] = None,
) -> List[AbsenceMark]:
    stmt = select(AbsenceMark).where(
        AbsenceMark.employee_id.in_(set(employee_ids)),
        AbsenceMark.date >= start,
        AbsenceMark.date <= end,
    )
    if location is not None:
        stmt = stmt.where((AbsenceMark.location == location) | (AbsenceMark.location.is_(None)))
    return list(employee_session.scalars(stmt))


def add_leave(
    employee_session,
    employee_id: int,
    start_date: datetime.date,
    end_date: datetime.date,
    *,
    status: str = "APPROVED",
    notes: str = "",
) -> Leave:
    normalized = (status or "").strip().upper()
    if normalized not in LEAVE_STATUSES:
        raise ValueError(f"Unsupported leave status '{status}'.")
    if end_date < start_date:
        raise ValueError("Leave end date must not precede its start date.")
    leave = Leave(
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        status=normalized,
        notes=notes,
    )
    employee_session.add(leave)
    employee_session.commit()
    employee_session.refresh(leave)
    return leave


def add_absence_mark(
    employee_session,
    employee_id: int,
    date: datetime.date,
    *,
    location: Optional[str] = None,
) -> AbsenceMark:
    mark = AbsenceMark(employee_id=employee_id, date=date, location=location)
    employee_session.add(mark)
    employee_session.commit()
    employee_session.refresh(mark)
    return mark


# ---------------------------------------------------------------------------
# Overrides and coverage rules


def list_active_overrides(
    session,
    start: datetime.date,
    end: datetime.date,
    *,
    employee_ids: Optional[Iterable[int]] = None,
    location: Optional[str] = None,
) -> List[ShiftOverride]:
    stmt = select(ShiftOverride).where(
        ShiftOverride.is_active.is_(True),
        ShiftOverride.date >= start,
        ShiftOverride.date <= end,
    )
    if employee_ids is not None:
        stmt = stmt.where(ShiftOverride.employee_id.in_(set(employee_ids)))
    if location is not None:
        stmt = stmt.where(ShiftOverride.location == location)
    return list(session.scalars(stmt.order_by(ShiftOverride.date.asc(), ShiftOverride.id.asc())))


def get_override(session, employee_id: int, date: datetime.date) -> Optional[ShiftOverride]:
    return session.execute(
        select(ShiftOverride).where(ShiftOverride.employee_id == employee_id, ShiftOverride.date == date)
    ).scalar_one_or_none()


def upsert_override(
    session,
    employee_id: int,
    date: datetime.date,
    shift: str,
    *,
    location: str = "",
    reason: str = "",
    created_by: str = "system",
    commit: bool = True,
) -> ShiftOverride:
    if shift not in OVERRIDE_SHIFT_CHOICES:
        raise ValueError(f"Unsupported override shift '{shift}'.")
    existing = get_override(session, employee_id, date)
    if existing is None:
        existing = ShiftOverride(employee_id=employee_id, date=date)
        session.add(existing)
    existing.override_shift = shift
    existing.location = location or ""
    existing.reason = reason or ""
    existing.is_active = True
    existing.created_by = created_by
    if commit:
        session.commit()
        session.refresh(existing)
    else:
        session.flush()
    return existing


def deactivate_override(session, employee_id: int, date: datetime.date, *, commit: bool = True) -> bool:
    result = session.execute(
        update(ShiftOverride)
        .where(
            ShiftOverride.employee_id == employee_id,
            ShiftOverride.date == date,
            ShiftOverride.is_active.is_(True),
        )
        .values(is_active=False)
    )
    if commit:
        session.commit()
    return bool(result.rowcount)


def count_active_overrides(
    session,
    start: datetime.date,
    end: datetime.date,
    *,
    location: Optional[str] = None,
) -> Dict[int, int]:
    stmt = (
        select(ShiftOverride.employee_id, func.count(ShiftOverride.id))
        .where(
            ShiftOverride.is_active.is_(True),
            ShiftOverride.date >= start,
            ShiftOverride.date <= end,
        )
        .group_by(ShiftOverride.employee_id)
    )
    if location is not None:
        stmt = stmt.where(ShiftOverride.location == location)
    return {employee_id: int(count) for employee_id, count in session.execute(stmt)}


def get_coverage_rules(session) -> Dict[int, CoverageRule]:
    return {rule.day_of_week: rule for rule in session.scalars(select(CoverageRule))}


def upsert_coverage_rule(
    session,
    day_of_week: int,
    min_am: int,
    min_pm: int,
    *,
    enabled: bool = True,
) -> CoverageRule:
    if not 0 <= int(day_of_week) <= 6:
        raise ValueError("day_of_week must be between 0 (Monday) and 6 (Sunday).")
    if int(min_am) < 0 or int(min_pm) < 0:
        raise ValueError("Coverage minimums must not be negative.")
    rule = session.execute(
        select(CoverageRule).where(CoverageRule.day_of_week == day_of_week)
    ).scalar_one_or_none()
    if rule is None:
        rule = CoverageRule(day_of_week=day_of_week)
        session.add(rule)
    rule.min_am = int(min_am)
    rule.min_pm = int(min_pm)
    rule.enabled = bool(enabled)
    session.commit()
    session.refresh(rule)
    return rule


# ---------------------------------------------------------------------------
# Locks and week status


def get_active_lock(
    session,
    scope_type: LockScope,
    scope_value: datetime.date,
    location: str = "",
) -> Optional[ScheduleLock]:
    stmt = select(ScheduleLock).where(
        ScheduleLock.scope_type == LockScope(scope_type).value,
        ScheduleLock.scope_value == scope_value,
        ScheduleLock.location == (location or ""),
        ScheduleLock.is_active.is_(True),
    )
    return session.scalars(stmt.order_by(ScheduleLock.id.desc())).first()


def list_active_day_locks(
    session,
    dates: Iterable[datetime.date],
    location: str = "",
) -> List[ScheduleLock]:
    stmt = select(ScheduleLock).where(
        ScheduleLock.scope_type == LockScope.DAY.value,
        ScheduleLock.scope_value.in_(set(dates)),
        ScheduleLock.location == (location or ""),
        ScheduleLock.is_active.is_(True),
    )
    return list(session.scalars(stmt.order_by(ScheduleLock.scope_value.asc())))


def create_lock(
    session,
    scope_type: LockScope,
    scope_value: datetime.date,
    *,
    location: str = "",
    locked_by: str = "system",
    reason: str = "",
) -> ScheduleLock:
    scope = LockScope(scope_type).value
    session.execute(
        update(ScheduleLock)
        .where(
            ScheduleLock.scope_type == scope,
            ScheduleLock.scope_value == scope_value,
            ScheduleLock.location == (location or ""),
            ScheduleLock.is_active.is_(True),
        )
        .values(is_active=False)
    )
    lock = ScheduleLock(
        scope_type=scope,
        scope_value=scope_value,
        location=location or "",
        locked_by=locked_by,
        reason=reason or "",
        is_active=True,
    )
    session.add(lock)
    session.commit()
    session.refresh(lock)
    return lock


def revoke_lock(
    session,
    scope_type: LockScope,
    scope_value: datetime.date,
    *,
    location: str = "",
    revoked_by: str = "system",
) -> int:
    result = session.execute(
        update(ScheduleLock)
        .where(
            ScheduleLock.scope_type == LockScope(scope_type).value,
            ScheduleLock.scope_value == scope_value,
            ScheduleLock.location == (location or ""),
            ScheduleLock.is_active.is_(True),
        )
        .values(is_active=False, revoked_by=revoked_by, revoked_at=_utcnow())
    )
    session.commit()
    return int(result.rowcount or 0)


def get_week_status_row(session, week_start: datetime.date, location: str = "") -> Optional[ScheduleWeekStatus]:
    return session.execute(
        select(ScheduleWeekStatus).where(
            ScheduleWeekStatus.week_start == week_start,
            ScheduleWeekStatus.location == (location or ""),
        )
    ).scalar_one_or_none()


def set_week_status(
    session,
    week_start: datetime.date,
    status: str,
    *,
    location: str = "",
    actor: Optional[str] = None,
) -> ScheduleWeekStatus:
    normalized = (status or "").strip().upper()
    if normalized not in WEEK_STATUS_CHOICES:
        raise ValueError(f"Unsupported week status '{status}'.")
    row = get_week_status_row(session, week_start, location)
    if row is None:
        row = ScheduleWeekStatus(week_start=week_start, location=location or "")
        session.add(row)
    row.status = normalized
    if normalized == WeekStatus.APPROVED.value:
        row.approved_by = actor
        row.approved_at = _utcnow()
    else:
        row.approved_by = None
        row.approved_at = None
    session.commit()
    session.refresh(row)
    return row


# ---------------------------------------------------------------------------
# Policy


def get_policies(session) -> List[Policy]:
    policy_session, close_session = _coerce_policy_session(session)
    try:
        stmt = select(Policy).order_by(Policy.name.asc(), Policy.id.asc())
        return list(policy_session.scalars(stmt))
    finally:
        if close_session:
            policy_session.close()


def upsert_policy(session, name: str, params_dict: Dict, *, edited_by: str = "system") -> Policy:
    policy_session, close_session = _coerce_policy_session(session)
    try:
        existing: Optional[Policy] = policy_session.execute(
            select(Policy).where(Policy.name == name)
        ).scalars().first()
        payload = params_dict if isinstance(params_dict, dict) else {}
        if existing:
            existing.paramsJSON = json.dumps(payload)
            existing.lastEditedBy = edited_by
            existing.lastEditedAt = _utcnow()
            policy_session.commit()
            policy_session.refresh(existing)
            return existing
        policy = Policy(
            name=name,
            paramsJSON=json.dumps(payload),
            lastEditedBy=edited_by,
            lastEditedAt=_utcnow(),
        )
        policy_session.add(policy)
        policy_session.commit()
        policy_session.refresh(policy)
        return policy
    finally:
        if close_session:
            policy_session.close()


def get_active_policy(session) -> Optional[Policy]:
    policy_session, close_session = _coerce_policy_session(session)
    try:
        stmt = select(Policy).order_by(Policy.lastEditedAt.desc(), Policy.id.desc())
        return policy_session.scalars(stmt).first()
    finally:
        if close_session:
            policy_session.close()
