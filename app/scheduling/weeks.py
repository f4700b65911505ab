from __future__ import annotations

import calendar
import datetime
import re
from typing import List, Tuple

from errors import InvalidInputError

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MONTH_KEY = re.compile(r"^(\d{4})-(\d{2})$")


def parse_iso_date(value) -> datetime.date:
    """Accept a date/datetime or a strict YYYY-MM-DD string."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if not isinstance(value, str) or not _ISO_DATE.match(value.strip()):
        raise InvalidInputError(f"Invalid date '{value}', expected YYYY-MM-DD.", details={"value": value})
    try:
        return datetime.date.fromisoformat(value.strip())
    except ValueError:
        raise InvalidInputError(f"Invalid date '{value}'.", details={"value": value}) from None


def parse_month_key(value) -> Tuple[int, int]:
    """Return (year, month) from a strict YYYY-MM key."""
    match = _MONTH_KEY.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise InvalidInputError(f"Invalid month '{value}', expected YYYY-MM.", details={"value": value})
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise InvalidInputError(f"Invalid month '{value}'.", details={"value": value})
    return year, month


def normalize_week_start(date_value, week_start_weekday: int) -> datetime.date:
    """Return the canonical week-start date on or before the provided date."""
    date_value = parse_iso_date(date_value)
    delta = (date_value.weekday() - week_start_weekday) % 7
    return date_value - datetime.timedelta(days=delta)


def week_dates(week_start: datetime.date) -> List[datetime.date]:
    return [week_start + datetime.timedelta(days=offset) for offset in range(7)]


def first_weekday_of_year(year: int, weekday: int) -> datetime.date:
    jan_first = datetime.date(year, 1, 1)
    return jan_first + datetime.timedelta(days=(weekday - jan_first.weekday()) % 7)


def week_index_in_year(date_: datetime.date, week_start_weekday: int) -> int:
    """Full weeks elapsed since the first week-start weekday of the date's year; 0 before it."""
    origin = first_weekday_of_year(date_.year, week_start_weekday)
    days = (date_ - origin).days
    if days < 0:
        return 0
    return days // 7


def month_dates(year: int, month: int) -> List[datetime.date]:
    _, days_in_month = calendar.monthrange(year, month)
    return [datetime.date(year, month, day) for day in range(1, days_in_month + 1)]


def month_bounds(date_: datetime.date) -> Tuple[datetime.date, datetime.date]:
    _, days_in_month = calendar.monthrange(date_.year, date_.month)
    return date_.replace(day=1), date_.replace(day=days_in_month)


def format_week_label(week_start: datetime.date) -> str:
    end = week_start + datetime.timedelta(days=6)
    start_str = week_start.strftime("%b %d")
    end_str = end.strftime("%b %d")
    if week_start.year != end.year:
        start_str = week_start.strftime("%b %d %Y")
        end_str = end.strftime("%b %d %Y")
    return f"Week of {start_str} - {end_str}"
