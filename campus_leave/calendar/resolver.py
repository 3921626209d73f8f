"""Holiday calendar resolution.

Merges three sources into one per-date view for an organization (and
optionally a class):

* stored ``Holiday`` rows, expanded to the individual dates they cover;
* weekend holidays generated on read from the effective ``WorkingDayPolicy``;
* ``CalendarException`` overrides, applied last.

Precedence per date is exception > stored > generated. A FORCE_WORKING
exception clears holiday status from any source; a FORCE_HOLIDAY exception
makes the date a holiday of type OTHER described by the exception reason.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.calendar.models import CalendarException, Holiday, WorkingDayPolicy
from campus_leave.calendar.weekends import evaluate_weekend, policy_for
from campus_leave.common.constants import (
    DATE_FORMAT,
    HOLIDAY_TYPE_LABELS,
    WEEKEND_HOLIDAY_TYPES,
    HolidaySource,
    HolidayType,
    OverrideType,
)
from campus_leave.common.dates import iter_dates
from campus_leave.common.exceptions import InvalidDateRangeError
from campus_leave.config import settings

logger = logging.getLogger(__name__)

_SYNTHETIC_ID = re.compile(r"^(sunday|saturday)-\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class ResolvedDay:
    """A single non-working date and why it is non-working."""

    date: date
    holiday_type: HolidayType
    description: str
    source: HolidaySource
    # Stored holiday id, exception id, or synthetic weekend id
    holiday_id: str
    start_date: date
    end_date: date


@dataclass(frozen=True)
class HolidayEntry:
    """A holiday as listed for display; stored holidays keep their interval."""

    id: str
    start_date: date
    end_date: date
    holiday_type: HolidayType
    description: str
    source: HolidaySource
    editable: bool


def synthetic_holiday_id(holiday_type: HolidayType, day: date) -> str:
    return f"{holiday_type.value.lower()}-{day.strftime(DATE_FORMAT)}"


def is_synthetic_holiday_id(holiday_id: str) -> bool:
    return bool(_SYNTHETIC_ID.match(holiday_id))


def _created_key(obj) -> datetime:
    created = obj.created_at
    if created is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if created.tzinfo is None:
        return created.replace(tzinfo=timezone.utc)
    return created


# ═══════════════════════════════════════════════════════════════════════
# Pure merge
# ═══════════════════════════════════════════════════════════════════════


def _exceptions_by_date(
    exceptions: Sequence[CalendarException],
    class_id: Optional[str],
) -> dict[date, CalendarException]:
    """Winning applicable exception per date (latest created_at)."""
    winners: dict[date, CalendarException] = {}
    for exc in exceptions:
        if not exc.applies_to(class_id):
            continue
        current = winners.get(exc.date)
        if current is None:
            winners[exc.date] = exc
            continue
        logger.warning(
            "Multiple calendar exceptions apply on %s (class=%s): %s, %s",
            exc.date, class_id, current.id, exc.id,
        )
        if _created_key(exc) > _created_key(current):
            winners[exc.date] = exc
    return winners


def _stored_by_date(
    holidays: Sequence[Holiday],
    start: date,
    end: date,
) -> dict[date, Holiday]:
    by_date: dict[date, Holiday] = {}
    # Earliest-starting holiday wins when stored intervals overlap
    for holiday in sorted(holidays, key=lambda h: (h.start_date, h.id)):
        lo = max(holiday.start_date, start)
        hi = min(holiday.end_date, end)
        for day in iter_dates(lo, hi):
            by_date.setdefault(day, holiday)
    return by_date


def resolve_days(
    start: date,
    end: date,
    *,
    policies: Sequence,
    holidays: Sequence[Holiday],
    exceptions: Sequence[CalendarException],
    class_id: Optional[str] = None,
) -> list[ResolvedDay]:
    """Every non-working date in ``[start, end]``, ordered by date.

    Each date is evaluated independently; the weekend check runs for every
    day of the range.
    """
    if end < start:
        raise InvalidDateRangeError(start, end)

    overrides = _exceptions_by_date(exceptions, class_id)
    stored = _stored_by_date(holidays, start, end)
    resolved: list[ResolvedDay] = []

    for day in iter_dates(start, end):
        override = overrides.get(day)
        if override is not None:
            if override.override_type == OverrideType.FORCE_WORKING:
                continue
            resolved.append(
                ResolvedDay(
                    date=day,
                    holiday_type=HolidayType.OTHER,
                    description=override.reason,
                    source=HolidaySource.EXCEPTION,
                    holiday_id=override.id,
                    start_date=day,
                    end_date=day,
                )
            )
            continue

        holiday = stored.get(day)
        if holiday is not None:
            resolved.append(
                ResolvedDay(
                    date=day,
                    holiday_type=holiday.holiday_type,
                    description=holiday.description,
                    source=HolidaySource.STORED,
                    holiday_id=holiday.id,
                    start_date=holiday.start_date,
                    end_date=holiday.end_date,
                )
            )
            continue

        status = evaluate_weekend(day, policy_for(policies, day))
        if status.is_weekend_holiday:
            resolved.append(
                ResolvedDay(
                    date=day,
                    holiday_type=status.subtype,
                    description=HOLIDAY_TYPE_LABELS[status.subtype],
                    source=HolidaySource.GENERATED,
                    holiday_id=synthetic_holiday_id(status.subtype, day),
                    start_date=day,
                    end_date=day,
                )
            )

    return resolved


# ═══════════════════════════════════════════════════════════════════════
# Loading
# ═══════════════════════════════════════════════════════════════════════


async def load_policies(
    db: AsyncSession, organization_id: str, start: date, end: date
) -> list[WorkingDayPolicy]:
    result = await db.execute(
        select(WorkingDayPolicy).where(
            WorkingDayPolicy.organization_id == organization_id,
            WorkingDayPolicy.effective_from <= end,
            (WorkingDayPolicy.effective_to.is_(None))
            | (WorkingDayPolicy.effective_to >= start),
        )
    )
    return list(result.scalars().all())


async def load_holidays(
    db: AsyncSession, organization_id: str, start: date, end: date
) -> list[Holiday]:
    result = await db.execute(
        select(Holiday)
        .where(
            Holiday.organization_id == organization_id,
            Holiday.start_date <= end,
            Holiday.end_date >= start,
        )
        .order_by(Holiday.start_date)
    )
    return list(result.scalars().all())


async def load_exceptions(
    db: AsyncSession, organization_id: str, start: date, end: date
) -> list[CalendarException]:
    result = await db.execute(
        select(CalendarException)
        .where(
            CalendarException.organization_id == organization_id,
            CalendarException.date >= start,
            CalendarException.date <= end,
        )
        .order_by(CalendarException.date, CalendarException.created_at)
    )
    return list(result.scalars().all())


# ═══════════════════════════════════════════════════════════════════════
# Public queries
# ═══════════════════════════════════════════════════════════════════════


async def resolve_holiday_calendar(
    db: AsyncSession,
    organization_id: str,
    start: date,
    end: date,
    class_id: Optional[str] = None,
) -> list[ResolvedDay]:
    """Resolved non-working dates for an organization over ``[start, end]``."""
    if end < start:
        raise InvalidDateRangeError(start, end)
    policies = await load_policies(db, organization_id, start, end)
    holidays = await load_holidays(db, organization_id, start, end)
    exceptions = await load_exceptions(db, organization_id, start, end)
    return resolve_days(
        start,
        end,
        policies=policies,
        holidays=holidays,
        exceptions=exceptions,
        class_id=class_id,
    )


async def is_working_day(
    db: AsyncSession,
    organization_id: str,
    day: date,
    class_id: Optional[str] = None,
) -> bool:
    resolved = await resolve_holiday_calendar(db, organization_id, day, day, class_id)
    return not resolved


async def list_holiday_entries(
    db: AsyncSession,
    organization_id: str,
    start: date,
    end: date,
    class_id: Optional[str] = None,
) -> list[HolidayEntry]:
    """Holidays for display over ``[start, end]``.

    Stored holidays appear once with their full interval, provided at least
    one of their in-range dates is still a holiday after exceptions.
    Generated weekend days and FORCE_HOLIDAY exceptions appear as single-day
    entries that cannot be edited through the holiday endpoints.
    """
    resolved = await resolve_holiday_calendar(db, organization_id, start, end, class_id)

    entries: dict[str, HolidayEntry] = {}
    for day in resolved:
        if day.holiday_id in entries:
            continue
        entries[day.holiday_id] = HolidayEntry(
            id=day.holiday_id,
            start_date=day.start_date,
            end_date=day.end_date,
            holiday_type=day.holiday_type,
            description=day.description,
            source=day.source,
            editable=day.source == HolidaySource.STORED,
        )

    return sorted(
        entries.values(),
        key=lambda e: (e.start_date, e.source != HolidaySource.STORED, e.id),
    )


async def get_upcoming_holidays(
    db: AsyncSession,
    organization_id: str,
    *,
    today: date,
    limit: Optional[int] = None,
) -> list[Holiday]:
    """Next stored (non-weekend) holidays starting on or after ``today``."""
    limit = settings.UPCOMING_HOLIDAYS_LIMIT if limit is None else limit
    result = await db.execute(
        select(Holiday)
        .where(
            Holiday.organization_id == organization_id,
            Holiday.start_date >= today,
            Holiday.holiday_type.not_in(list(WEEKEND_HOLIDAY_TYPES)),
        )
        .order_by(Holiday.start_date, Holiday.description)
        .limit(limit)
    )
    return list(result.scalars().all())
