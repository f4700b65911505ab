from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Dict, Iterable

from shifts import Availability, ShiftKind


@dataclass(frozen=True)
class DayCounts:
    am: int = 0
    pm: int = 0
    ext_am: int = 0
    ext_pm: int = 0

    @property
    def total(self) -> int:
        return self.am + self.pm + self.ext_am + self.ext_pm

    def with_move(self, source: ShiftKind, target: ShiftKind) -> "DayCounts":
        """Counts after one working cell changes from source to target."""
        return add_shift(add_shift(self, source, -1), target, 1)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def add_shift(counts: DayCounts, shift: ShiftKind, step: int = 1) -> DayCounts:
    if shift is ShiftKind.MORNING:
        return replace(counts, am=counts.am + step)
    if shift is ShiftKind.EVENING:
        return replace(counts, pm=counts.pm + step)
    if shift is ShiftKind.COVER_EXT_AM:
        return replace(counts, ext_am=counts.ext_am + step)
    if shift is ShiftKind.COVER_EXT_PM:
        return replace(counts, ext_pm=counts.ext_pm + step)
    if shift is ShiftKind.NONE:
        return counts
    raise ValueError(f"Unhandled shift kind '{shift}'.")


def compute_day_counts(cells: Iterable) -> DayCounts:
    """
    Count one day's cells.

    Only WORK cells contribute. Boutique shifts feed am/pm; coverage shifts
    feed ext_am/ext_pm and never the boutique counters. Every weekly, monthly
    and validation path goes through this function.
    """
    counts = DayCounts()
    for cell in cells:
        if cell.availability is not Availability.WORK:
            continue
        counts = add_shift(counts, cell.effective_shift)
    return counts
