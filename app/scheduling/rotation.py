from __future__ import annotations

import datetime
from typing import Dict

from policy import is_restricted_special_day, week_start_weekday
from shifts import ShiftKind, Team

from .weeks import week_index_in_year


def base_shift(team: Team, date_: datetime.date, policy: Dict) -> ShiftKind:
    """Rotation-law shift for a team on a date; no I/O."""
    if is_restricted_special_day(policy, date_):
        return ShiftKind.EVENING
    even_week = week_index_in_year(date_, week_start_weekday(policy)) % 2 == 0
    if team is Team.A:
        return ShiftKind.MORNING if even_week else ShiftKind.EVENING
    if team is Team.B:
        return ShiftKind.EVENING if even_week else ShiftKind.MORNING
    raise ValueError(f"Unhandled team '{team}'.")
