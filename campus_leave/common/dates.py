"""Date helpers shared by the calendar and leave modules."""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Iterator, Optional


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date from start to end, both inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def ranges_overlap(
    a_start: date,
    a_end: Optional[date],
    b_start: date,
    b_end: Optional[date],
) -> bool:
    """Closed-interval overlap; a ``None`` end means open-ended."""
    a_before_b_ends = b_end is None or a_start <= b_end
    b_before_a_ends = a_end is None or b_start <= a_end
    return a_before_b_ends and b_before_a_ends
