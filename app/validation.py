from __future__ import annotations

import datetime
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple

from policy import cache_ttl_seconds, is_restricted_special_day, policy_for_session, resolve_policy, weekday_token
from scheduling.counts import DayCounts
from scheduling.grid import WeekGrid, build_week_grid
from scheduling.rules import RuleSnapshot, effective_minimums
from scheduling.weeks import parse_iso_date
from shifts import ValidationType

logger = logging.getLogger(__name__)

SEVERITY_WARNING = "warning"
SEVERITY_INFO = "info"


@dataclass(frozen=True)
class ValidationResult:
    type: ValidationType
    severity: str
    message: str
    am_count: int
    pm_count: int
    min_am: int
    min_pm: int

    @property
    def is_violation(self) -> bool:
        return self.severity == SEVERITY_WARNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity,
            "message": self.message,
            "am_count": self.am_count,
            "pm_count": self.pm_count,
            "min_am": self.min_am,
            "min_pm": self.min_pm,
        }


def validate(
    date_: datetime.date,
    counts: DayCounts,
    rule: Optional[RuleSnapshot],
    policy: Dict,
) -> List[ValidationResult]:
    """Evaluate one day's counts; every rule is checked independently."""
    min_am, min_pm = effective_minimums(date_, rule, policy)
    am, pm = counts.am, counts.pm

    def result(kind: ValidationType, message: str, severity: str = SEVERITY_WARNING) -> ValidationResult:
        return ValidationResult(kind, severity, message, am, pm, min_am, min_pm)

    results: List[ValidationResult] = []
    if is_restricted_special_day(policy, date_):
        if am > 0:
            results.append(
                result(
                    ValidationType.SPECIAL_DAY_AM_PRESENT,
                    f"{weekday_token(date_)} is PM-only; AM count ({am}) must be 0",
                )
            )
        return results

    if min_pm > 0 and pm < min_pm:
        results.append(result(ValidationType.MIN_PM, f"PM count ({pm}) is below minimum {min_pm}"))
    if am > pm:
        results.append(
            result(ValidationType.AM_EXCEEDS_PM, f"AM ({am}) > PM ({pm}): PM must be at least AM")
        )
    if rule is not None and rule.enabled and am < min_am:
        results.append(
            result(ValidationType.MIN_AM, f"AM count ({am}) is below minimum {min_am}", SEVERITY_INFO)
        )
    return results


def validate_grid(grid: WeekGrid) -> Dict[datetime.date, List[ValidationResult]]:
    policy = grid.policy or resolve_policy(None)
    return {
        day.date: validate(day.date, counts, day.rule, policy)
        for day, counts in zip(grid.days, grid.counts)
    }


class ValidationCache:
    """
    Short-lived results keyed by (date, scope); safe for concurrent use.

    Every invalidation bumps ``generation``. A writer that read the generation
    before building its results passes it back to ``set``, which drops the
    results if an invalidation happened in between. Entries may also carry a
    policy tag; a read with a different tag is a miss.
    """

    def __init__(self, ttl_seconds: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[datetime.date, Hashable], Tuple[float, Optional[str], List[ValidationResult]]] = {}
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def get(
        self,
        date_: datetime.date,
        scope: Hashable = None,
        *,
        tag: Optional[str] = None,
    ) -> Optional[List[ValidationResult]]:
        key = (date_, scope)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, entry_tag, results = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            if tag is not None and entry_tag != tag:
                return None
        logger.debug("Validation cache hit for %s scope=%s", date_.isoformat(), scope)
        return list(results)

    def set(
        self,
        date_: datetime.date,
        scope: Hashable,
        results: Iterable[ValidationResult],
        *,
        ttl_seconds: Optional[float] = None,
        tag: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Store results; returns False when they were built before a later invalidation."""
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            return False
        with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug("Discarded stale validation results for %s scope=%s", date_.isoformat(), scope)
                return False
            self._entries[(date_, scope)] = (self._clock() + ttl, tag, list(results))
        return True

    def invalidate(
        self,
        dates: Optional[Iterable[datetime.date]] = None,
        scope: Hashable = None,
    ) -> int:
        """Drop entries for the given dates (all scopes unless one is named); no dates drops everything."""
        with self._lock:
            self._generation += 1
            if dates is None and scope is None:
                removed = len(self._entries)
                self._entries.clear()
            else:
                targets = set(dates) if dates is not None else None
                doomed = [
                    key
                    for key in self._entries
                    if (targets is None or key[0] in targets) and (scope is None or key[1] == scope)
                ]
                for key in doomed:
                    del self._entries[key]
                removed = len(doomed)
        logger.debug("Invalidated %d validation cache entries", removed)
        return removed

    def clear(self) -> None:
        self.invalidate()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


validation_cache = ValidationCache()


def policy_tag(policy: Dict) -> str:
    return json.dumps(policy, sort_keys=True, default=str)


def validate_day(
    session,
    date_value,
    *,
    location: Optional[str] = None,
    employee_session=None,
    policy: Optional[Dict] = None,
    cache: Optional[ValidationCache] = None,
) -> List[ValidationResult]:
    """Validate one date for a location scope, reusing cached results while fresh."""
    date_ = parse_iso_date(date_value)
    policy = policy_for_session(session, policy)
    tag = policy_tag(policy)
    cache = validation_cache if cache is None else cache
    cached = cache.get(date_, location, tag=tag)
    if cached is not None:
        return cached
    generation = cache.generation
    grid = build_week_grid(session, date_, location=location, employee_session=employee_session, policy=policy)
    index = grid.day_index(date_)
    results = validate(date_, grid.counts[index], grid.days[index].rule, policy)
    cache.set(date_, location, results, ttl_seconds=cache_ttl_seconds(policy), tag=tag, generation=generation)
    return results


def validate_week(
    session,
    week_start,
    *,
    location: Optional[str] = None,
    employee_session=None,
    policy: Optional[Dict] = None,
    cache: Optional[ValidationCache] = None,
) -> Dict[str, Any]:
    """Return the week's grid-derived validation report keyed by ISO date."""
    policy = policy_for_session(session, policy)
    tag = policy_tag(policy)
    cache = validation_cache if cache is None else cache
    generation = cache.generation
    grid = build_week_grid(session, week_start, location=location, employee_session=employee_session, policy=policy)
    by_date = validate_grid(grid)
    ttl = cache_ttl_seconds(policy)
    for date_, results in by_date.items():
        cache.set(date_, location, results, ttl_seconds=ttl, tag=tag, generation=generation)
    issues = [
        dict(result.to_dict(), date=date_.isoformat())
        for date_, results in by_date.items()
        for result in results
    ]
    return {
        "week_start": grid.week_start.isoformat(),
        "location": location,
        "days": {date_.isoformat(): [result.to_dict() for result in results] for date_, results in by_date.items()},
        "issues": [issue for issue in issues if issue["severity"] == SEVERITY_WARNING],
        "warnings": [issue for issue in issues if issue["severity"] == SEVERITY_INFO]
        + [warning.to_dict() for warning in grid.integrity_warnings],
    }
