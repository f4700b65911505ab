from __future__ import annotations

import copy
import datetime
from typing import Any, Dict, List, Optional, Tuple

from database import get_active_policy, upsert_policy
from errors import InvalidInputError


WEEKDAY_TOKENS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

BASELINE_POLICY: Dict[str, Any] = {
    "name": "Boutique Rotation",
    "description": "Two-team AM/PM rotation with a PM-only Friday.",
    "week_start_weekday": 5,
    "special_weekday": 4,
    "floors": {
        "am": 2,
        "pm": 2,
    },
    # Inclusive ISO date ranges that lift the special-day AM restriction.
    "exception_windows": [],
    "validation_cache_ttl_seconds": 60,
    "default_location": "",
}


def load_active_policy(conn) -> Dict:
    """Return the active policy payload as a dict, falling back to the baseline."""
    if conn is None:
        return _normalize_policy({})
    if callable(conn):
        with conn() as session:
            policy = get_active_policy(session)
            return _normalize_policy(policy.params_dict() if policy else {})
    policy = get_active_policy(conn)
    return _normalize_policy(policy.params_dict() if policy else {})


def _normalize_policy(policy: Dict) -> Dict:
    """Fill defaults and reject values the rotation cannot work with."""
    if not isinstance(policy, dict):
        policy = {}
    normalized = copy.deepcopy(policy)
    for key in ("week_start_weekday", "special_weekday", "validation_cache_ttl_seconds", "default_location"):
        normalized.setdefault(key, BASELINE_POLICY[key])
    normalized["week_start_weekday"] = _weekday(normalized["week_start_weekday"], "week_start_weekday")
    normalized["special_weekday"] = _weekday(normalized["special_weekday"], "special_weekday")

    floors = dict(BASELINE_POLICY["floors"])
    floors.update(normalized.get("floors") or {})
    for shift_key in ("am", "pm"):
        try:
            value = int(floors[shift_key])
        except (TypeError, ValueError):
            raise InvalidInputError(f"Floor '{shift_key}' must be an integer.") from None
        if value < 0:
            raise InvalidInputError(f"Floor '{shift_key}' must not be negative.")
        floors[shift_key] = value
    normalized["floors"] = floors

    try:
        ttl = float(normalized["validation_cache_ttl_seconds"])
    except (TypeError, ValueError):
        ttl = float(BASELINE_POLICY["validation_cache_ttl_seconds"])
    normalized["validation_cache_ttl_seconds"] = max(0.0, ttl)
    normalized["default_location"] = str(normalized.get("default_location") or "")
    normalized["exception_windows"] = [
        _normalize_window(window) for window in normalized.get("exception_windows") or []
    ]
    return normalized


def _weekday(value: Any, key: str) -> int:
    try:
        weekday = int(value)
    except (TypeError, ValueError):
        raise InvalidInputError(f"'{key}' must be a weekday number.") from None
    if not 0 <= weekday <= 6:
        raise InvalidInputError(f"'{key}' must be between 0 (Monday) and 6 (Sunday).")
    return weekday


def _normalize_window(window: Any) -> Dict[str, str]:
    if not isinstance(window, dict):
        raise InvalidInputError("Exception windows must be objects with start and end dates.")
    try:
        start = datetime.date.fromisoformat(str(window.get("start")))
        end = datetime.date.fromisoformat(str(window.get("end")))
    except ValueError:
        raise InvalidInputError(
            "Exception window dates must be YYYY-MM-DD.", details={"window": window}
        ) from None
    if end < start:
        raise InvalidInputError("Exception window ends before it starts.", details={"window": window})
    return {
        "label": str(window.get("label") or ""),
        "start": start.isoformat(),
        "end": end.isoformat(),
    }


def build_default_policy() -> Dict[str, Any]:
    """Return a deepcopy so callers can mutate the policy safely."""
    return copy.deepcopy(BASELINE_POLICY)


def ensure_default_policy(session_factory) -> None:
    """Seed the baseline policy once so the grid has a configuration to read."""

    with session_factory() as session:
        if get_active_policy(session):
            return
        defaults = build_default_policy()
        name = defaults.get("name", "Boutique Rotation")
        params = {key: value for key, value in defaults.items() if key != "name"}
        upsert_policy(session, name, params, edited_by="system")


def resolve_policy(policy: Optional[Dict]) -> Dict:
    """Normalize a caller-supplied policy, or fall back to the baseline."""
    if policy is None:
        return _normalize_policy(build_default_policy())
    return _normalize_policy(policy)


def policy_for_session(session, policy: Optional[Dict]) -> Dict:
    """Normalize an explicit policy, otherwise read the stored active one."""
    if policy is None:
        return load_active_policy(session)
    return _normalize_policy(policy)


def week_start_weekday(policy: Dict) -> int:
    return int(policy.get("week_start_weekday", BASELINE_POLICY["week_start_weekday"]))


def special_weekday(policy: Dict) -> int:
    return int(policy.get("special_weekday", BASELINE_POLICY["special_weekday"]))


def min_floors(policy: Dict) -> Tuple[int, int]:
    floors = policy.get("floors") or BASELINE_POLICY["floors"]
    return int(floors.get("am", 0)), int(floors.get("pm", 0))


def cache_ttl_seconds(policy: Dict) -> float:
    return float(policy.get("validation_cache_ttl_seconds", BASELINE_POLICY["validation_cache_ttl_seconds"]))


def exception_windows(policy: Dict) -> List[Dict[str, str]]:
    return list(policy.get("exception_windows") or [])


def exception_window_for(policy: Dict, date_: datetime.date) -> Optional[Dict[str, str]]:
    """Return the exception window covering the date, if any."""
    iso = date_.isoformat()
    for window in exception_windows(policy):
        if window["start"] <= iso <= window["end"]:
            return window
    return None


def is_special_weekday(policy: Dict, date_: datetime.date) -> bool:
    return date_.weekday() == special_weekday(policy)


def is_restricted_special_day(policy: Dict, date_: datetime.date) -> bool:
    """Special weekday outside every exception window: PM-only staffing."""
    return is_special_weekday(policy, date_) and exception_window_for(policy, date_) is None


def weekday_token(date_: datetime.date) -> str:
    return WEEKDAY_TOKENS[date_.weekday()]
