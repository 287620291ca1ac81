from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from fractions import Fraction

from attendance_parser.records import ParsedRecord, percentage

DEFAULT_MINIMUM = 75.0
DEFAULT_RELIEF_MINIMUM = 65.0


@dataclass(frozen=True)
class ClassesNeeded:
    can_miss: int
    need_to_attend: int
    current_percentage: float
    is_above_minimum: bool


def classes_needed(present: int, total: int, minimum: float = DEFAULT_MINIMUM) -> ClassesNeeded:
    """
    How many upcoming classes can be skipped, or must be attended, to stay at
    or above ``minimum`` percent.

    need_to_attend is the least x with (present + x) / (total + x) >= minimum;
    can_miss is the largest y with present / (total + y) >= minimum.
    Both count the classes still to come, so they differ from the simpler
    ceil(minimum * total / 100) - present estimate: 20/20 at 75% allows 6
    misses here, not 5.
    """
    if not 0 < minimum < 100:
        raise ValueError(f"minimum percentage must be between 0 and 100, got {minimum}")
    m = Fraction(str(minimum))
    current = percentage(present, total)
    # compare exactly; the float percentage is for display only
    above = total > 0 and 100 * present >= m * total

    if not above:
        need = math.ceil((m * total - 100 * present) / (100 - m))
        return ClassesNeeded(0, max(1, need), current, False)

    can_miss = math.floor((100 * present - m * total) / m)
    return ClassesNeeded(can_miss, 0, current, True)


def overall(records: Iterable[ParsedRecord]) -> tuple[int, int]:
    """Combined (present, total) across all subjects."""
    present = total = 0
    for rec in records:
        present += rec.present
        total += rec.total
    return present, total
