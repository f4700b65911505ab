from __future__ import annotations

import datetime
from typing import Any, Dict, List, Mapping, Optional

from validation import ValidationResult

from .grid import WeekGrid


def week_insights(
    grid: WeekGrid,
    validations: Mapping[datetime.date, List[ValidationResult]],
    override_counts: Mapping[int, int],
) -> Dict[str, Any]:
    """Weekly summary: average AM/PM, violation days, coverage total, most-adjusted employee."""
    days = len(grid.counts) or 7
    total_am = sum(counts.am for counts in grid.counts)
    total_pm = sum(counts.pm for counts in grid.counts)
    coverage_total = sum(counts.ext_am + counts.ext_pm for counts in grid.counts)
    violation_days = sum(
        1 for results in validations.values() if any(result.is_violation for result in results)
    )

    most_adjusted: Optional[Dict[str, Any]] = None
    if override_counts:
        names = {row.employee_id: row.name for row in grid.counted_rows}
        employee_id, count = max(override_counts.items(), key=lambda item: (item[1], -item[0]))
        if count > 0:
            most_adjusted = {
                "employee_id": employee_id,
                "name": names.get(employee_id, str(employee_id)),
                "override_count": count,
            }

    return {
        "week_start": grid.week_start.isoformat(),
        "avg_am": round(total_am / days, 1),
        "avg_pm": round(total_pm / days, 1),
        "days_with_violations": violation_days,
        "external_coverage_total": coverage_total,
        "most_adjusted_employee": most_adjusted,
    }
