"""Weekend policy evaluation and nth-weekday arithmetic.

Pure functions over dates and policy values; nothing here touches the
database. Weekdays use Python's numbering (Monday=0 .. Sunday=6).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, Optional, Protocol, Sequence

from campus_leave.common.constants import (
    SATURDAY_OCCURRENCES,
    HolidayType,
    SaturdayOffPattern,
)
from campus_leave.common.dates import days_in_month
from campus_leave.config import settings

logger = logging.getLogger(__name__)

SATURDAY = 5
SUNDAY = 6


class PolicyLike(Protocol):
    sunday_off: bool
    saturday_off_pattern: SaturdayOffPattern


@dataclass(frozen=True)
class FallbackPolicy:
    """Policy applied when no stored policy covers a date."""

    sunday_off: bool
    saturday_off_pattern: SaturdayOffPattern


@dataclass(frozen=True)
class WeekendStatus:
    is_weekend_holiday: bool
    subtype: Optional[HolidayType] = None


NOT_WEEKEND = WeekendStatus(False)


def default_policy() -> FallbackPolicy:
    return FallbackPolicy(
        sunday_off=settings.DEFAULT_SUNDAY_OFF,
        saturday_off_pattern=SaturdayOffPattern(settings.DEFAULT_SATURDAY_OFF_PATTERN),
    )


# ── Nth weekday ─────────────────────────────────────────────────────

def nth_weekday_day(year: int, month: int, weekday: int, n: int) -> Optional[int]:
    """Day-of-month of the ``n``-th ``weekday`` in the month, or None.

    ``n`` is 1-based; a result past the end of the month (e.g. a fifth
    Saturday that doesn't exist) yields None.
    """
    if not 0 <= weekday <= 6:
        raise ValueError(f"weekday must be 0..6, got {weekday}")
    if n < 1:
        return None
    first_of_month = date(year, month, 1)
    first = 1 + (weekday - first_of_month.weekday() + 7) % 7
    day = first + 7 * (n - 1)
    if day > days_in_month(year, month):
        return None
    return day


def is_nth_weekday_of_month(d: date, weekday: int, occurrences: Iterable[int]) -> bool:
    """True when ``d`` is the n-th ``weekday`` of its month for some n given."""
    if d.weekday() != weekday:
        return False
    return any(
        nth_weekday_day(d.year, d.month, weekday, n) == d.day for n in occurrences
    )


# ── Weekend evaluation ──────────────────────────────────────────────

def evaluate_weekend(d: date, policy: PolicyLike) -> WeekendStatus:
    """Classify ``d`` under ``policy``.

    Sundays are weekend holidays only when the policy says so; Saturdays
    follow the Saturday-off pattern. Every other weekday is never a weekend
    holiday.
    """
    weekday = d.weekday()

    if weekday == SUNDAY:
        if policy.sunday_off:
            return WeekendStatus(True, HolidayType.SUNDAY)
        return NOT_WEEKEND

    if weekday == SATURDAY:
        pattern = SaturdayOffPattern(policy.saturday_off_pattern)
        if pattern == SaturdayOffPattern.ALL:
            return WeekendStatus(True, HolidayType.SATURDAY)
        if pattern == SaturdayOffPattern.NONE:
            return NOT_WEEKEND
        if is_nth_weekday_of_month(d, SATURDAY, SATURDAY_OCCURRENCES[pattern]):
            return WeekendStatus(True, HolidayType.SATURDAY)
        return NOT_WEEKEND

    return NOT_WEEKEND


# ── Policy selection ────────────────────────────────────────────────

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _created_key(policy) -> datetime:
    created = getattr(policy, "created_at", None)
    if created is None:
        return _EPOCH
    if created.tzinfo is None:
        # SQLite hands back naive datetimes
        return created.replace(tzinfo=timezone.utc)
    return created


def select_effective_policy(policies: Sequence, d: date):
    """Return the policy in effect on ``d``, or None if none covers it.

    Overlaps are rejected on write; if any exist anyway the latest
    ``effective_from`` wins, then the latest ``created_at``.
    """
    covering = [p for p in policies if p.covers(d)]
    if not covering:
        return None
    if len(covering) > 1:
        logger.warning(
            "Overlapping working day policies cover %s: %s",
            d, [p.id for p in covering],
        )
    return max(covering, key=lambda p: (p.effective_from, _created_key(p)))


def policy_for(policies: Sequence, d: date) -> PolicyLike:
    """Effective policy for ``d``, falling back to the configured default."""
    policy = select_effective_policy(policies, d)
    if policy is None:
        logger.debug("No working day policy covers %s; using default", d)
        return default_policy()
    return policy
