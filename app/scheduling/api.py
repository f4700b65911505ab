from __future__ import annotations

import datetime
from typing import Callable, Dict, Optional

from database import EmployeeSessionLocal, count_active_overrides
from policy import load_active_policy
from validation import validate_grid

from .grid import build_week_grid
from .insights import week_insights
from .month import build_month
from .suggestions import build_suggestions, monthly_override_counts


def week_snapshot(
    session_factory: Callable,
    week_start: datetime.date | str,
    *,
    location: Optional[str] = None,
    team: Optional[str] = None,
    include_guests: bool = False,
    employee_session_factory: Callable = EmployeeSessionLocal,
    policy: Optional[Dict] = None,
) -> Dict:
    """Grid, validations, suggestions and insights for one week as plain dicts."""
    if week_start is None:
        raise ValueError("week_start is required.")
    with session_factory() as session, employee_session_factory() as employee_session:
        if policy is None:
            policy = load_active_policy(session)
        grid = build_week_grid(
            session,
            week_start,
            team=team,
            location=location,
            include_guests=include_guests,
            employee_session=employee_session,
            policy=policy,
        )
        validations = validate_grid(grid)
        suggestions = build_suggestions(grid, monthly_override_counts(session, grid.dates))
        week_counts = count_active_overrides(session, grid.dates[0], grid.dates[-1], location=location)
    return {
        "grid": grid.to_dict(),
        "validations": {
            date_.isoformat(): [result.to_dict() for result in results]
            for date_, results in validations.items()
        },
        "suggestions": [suggestion.to_dict() for suggestion in suggestions],
        "insights": week_insights(grid, validations, week_counts),
    }


def month_snapshot(
    session_factory: Callable,
    month: str,
    *,
    location: Optional[str] = None,
    team: Optional[str] = None,
    employee_session_factory: Callable = EmployeeSessionLocal,
    policy: Optional[Dict] = None,
) -> Dict:
    with session_factory() as session, employee_session_factory() as employee_session:
        if policy is None:
            policy = load_active_policy(session)
        rollup = build_month(
            session,
            month,
            team=team,
            location=location,
            employee_session=employee_session,
            policy=policy,
        )
    return rollup.to_dict()
