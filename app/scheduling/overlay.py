from __future__ import annotations

from typing import Optional

from shifts import Availability, ShiftKind


def effective_shift(
    availability: Availability,
    base: ShiftKind,
    override: Optional[ShiftKind] = None,
) -> ShiftKind:
    """Overrides choose which shift a working day uses, never whether it is worked."""
    if availability is not Availability.WORK:
        return ShiftKind.NONE
    if override is not None:
        return override
    return base
