"""Working-day and conflict calculator for leave date ranges.

Order of checks for a proposed ``[start, end]``:

1. end must not precede start
2. the span ``end - start`` must not exceed ``MAX_LEAVE_SPAN_DAYS``
3. resolve the user's holiday calendar over the range
4. total days = span + 1; working days = total - non-working dates
5. zero working days is an error
6. pending/approved requests of the same user must not overlap
7. a half-day request deducts a flat 0.5
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.calendar.resolver import ResolvedDay, resolve_holiday_calendar
from campus_leave.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    HALF_DAY,
    SUMMARY_DATE_FORMAT,
    HolidayType,
)
from campus_leave.common.exceptions import (
    InvalidDateRangeError,
    NoWorkingDaysError,
    OverlappingLeaveError,
    RangeTooLargeError,
)
from campus_leave.config import settings
from campus_leave.directory.service import DirectoryService
from campus_leave.leave.models import LeaveRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NonWorkingDate:
    date: date
    description: str
    type: HolidayType


@dataclass(frozen=True)
class WorkingDaysResult:
    working_days: Decimal
    total_days: int
    holidays: list[NonWorkingDate] = field(default_factory=list)


def validate_date_range(
    start: date, end: date, *, max_span_days: Optional[int] = None
) -> None:
    """Reject reversed ranges and ranges longer than the configured span.

    The span is ``end - start`` in days, so a 30-day limit admits 31
    calendar days.
    """
    if end < start:
        raise InvalidDateRangeError(start, end)
    limit = settings.MAX_LEAVE_SPAN_DAYS if max_span_days is None else max_span_days
    span = (end - start).days
    if span > limit:
        raise RangeTooLargeError(span, limit)


def count_working_days(
    start: date,
    end: date,
    non_working: Sequence[ResolvedDay],
    *,
    is_half_day: bool = False,
) -> WorkingDaysResult:
    """Count working days in ``[start, end]`` given the resolved non-working dates."""
    total_days = (end - start).days + 1

    holidays: dict[date, NonWorkingDate] = {}
    for day in non_working:
        if start <= day.date <= end and day.date not in holidays:
            holidays[day.date] = NonWorkingDate(day.date, day.description, day.holiday_type)

    working = total_days - len(holidays)
    if working <= 0:
        raise NoWorkingDaysError(start, end)

    working_days = Decimal(working)
    if is_half_day:
        working_days -= HALF_DAY

    return WorkingDaysResult(
        working_days=working_days,
        total_days=total_days,
        holidays=[holidays[d] for d in sorted(holidays)],
    )


def describe_conflict(request: LeaveRequest) -> dict[str, Any]:
    """Structured and human-readable detail of one conflicting request."""
    start = request.start_date.strftime(SUMMARY_DATE_FORMAT)
    end = request.end_date.strftime(SUMMARY_DATE_FORMAT)
    span = start if request.start_date == request.end_date else f"{start} to {end}"
    return {
        "id": request.id,
        "leave_type_name": request.leave_type_name,
        "start_date": request.start_date.isoformat(),
        "end_date": request.end_date.isoformat(),
        "status": request.status.value,
        "summary": f"{request.leave_type_name}: {span} ({request.status.value})",
    }


async def find_overlapping_requests(
    db: AsyncSession,
    user_id: str,
    start: date,
    end: date,
    *,
    exclude_request_id: Optional[str] = None,
) -> list[LeaveRequest]:
    query = select(LeaveRequest).where(
        LeaveRequest.user_id == user_id,
        LeaveRequest.status.in_(ACTIVE_LEAVE_STATUSES),
        LeaveRequest.start_date <= end,
        LeaveRequest.end_date >= start,
    )
    if exclude_request_id is not None:
        query = query.where(LeaveRequest.id != exclude_request_id)
    result = await db.execute(query.order_by(LeaveRequest.start_date))
    return list(result.scalars().all())


async def calculate_working_days(
    db: AsyncSession,
    user_id: str,
    start: date,
    end: date,
    *,
    is_half_day: bool = False,
    exclude_request_id: Optional[str] = None,
) -> WorkingDaysResult:
    """Validate a proposed leave range for ``user_id`` and count its working days.

    Raises InvalidDateRangeError, RangeTooLargeError, NoWorkingDaysError or
    OverlappingLeaveError (carrying every conflicting request).
    """
    validate_date_range(start, end)

    user = await DirectoryService.get_user(db, user_id)
    non_working = await resolve_holiday_calendar(
        db, user.organization_id, start, end, user.class_id,
    )
    result = count_working_days(start, end, non_working, is_half_day=is_half_day)

    conflicts = await find_overlapping_requests(
        db, user_id, start, end, exclude_request_id=exclude_request_id,
    )
    if conflicts:
        logger.info(
            "Leave range %s..%s for user %s overlaps %d request(s)",
            start, end, user_id, len(conflicts),
        )
        raise OverlappingLeaveError([describe_conflict(r) for r in conflicts])

    return result
