from __future__ import annotations

import datetime
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Tuple

from database import get_coverage_rules
from policy import is_restricted_special_day, min_floors


@dataclass(frozen=True)
class RuleSnapshot:
    day_of_week: int
    min_am: int
    min_pm: int
    enabled: bool = True

    def to_dict(self) -> Dict:
        return asdict(self)


def load_rules(session) -> Dict[int, RuleSnapshot]:
    return {
        day: RuleSnapshot(rule.day_of_week, int(rule.min_am), int(rule.min_pm), bool(rule.enabled))
        for day, rule in get_coverage_rules(session).items()
    }


def effective_minimums(
    date_: datetime.date,
    rule: Optional[RuleSnapshot],
    policy: Dict,
) -> Tuple[int, int]:
    """(min_am, min_pm) for a day once floors and the special-day rule apply."""
    floor_am, floor_pm = min_floors(policy)
    active = rule is not None and rule.enabled
    rule_am = rule.min_am if active else 0
    rule_pm = rule.min_pm if active else 0
    if is_restricted_special_day(policy, date_):
        return 0, rule_pm
    return max(rule_am, floor_am), max(rule_pm, floor_pm)
