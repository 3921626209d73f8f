"""Calendar router — working day policies, holidays, exceptions, resolved calendar.

Writes are retried once on a storage conflict before the 409 is returned.
"""


from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.calendar.schemas import (
    CalendarExceptionBulkCreate,
    CalendarExceptionCreate,
    CalendarExceptionOut,
    CalendarExceptionUpdate,
    HolidayBulkCreate,
    HolidayCreate,
    HolidayEntryOut,
    HolidayOut,
    HolidayUpdate,
    ResolvedDayOut,
    WorkingDayCheckOut,
    WorkingDayPolicyCreate,
    WorkingDayPolicyOut,
    WorkingDayPolicyUpdate,
)
from campus_leave.calendar import resolver
from campus_leave.calendar.service import CalendarService
from campus_leave.common.concurrency import retry_on_conflict
from campus_leave.common.constants import OverrideType
from campus_leave.database import get_db
from campus_leave.dependencies import get_actor_id, get_today

router = APIRouter(prefix="/organizations/{organization_id}", tags=["calendar"])


# ── Working day policies ────────────────────────────────────────────

@router.get("/policies", response_model=list[WorkingDayPolicyOut])
async def list_policies(
    organization_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await CalendarService.list_policies(db, organization_id)


@router.get("/policies/effective", response_model=Optional[WorkingDayPolicyOut])
async def effective_policy(
    organization_id: str,
    on: date = Query(..., description="Date to evaluate (YYYY-MM-DD)"),
    db: AsyncSession = Depends(get_db),
):
    """Policy in effect on a date, or null when the default applies."""
    return await CalendarService.get_effective_policy(db, organization_id, on)


@router.post(
    "/policies",
    response_model=WorkingDayPolicyOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_policy(
    organization_id: str,
    body: WorkingDayPolicyCreate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: CalendarService.create_policy(db, organization_id, body, actor_id=actor_id),
    )


@router.patch("/policies/{policy_id}", response_model=WorkingDayPolicyOut)
async def update_policy(
    organization_id: str,
    policy_id: str,
    body: WorkingDayPolicyUpdate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: CalendarService.update_policy(
            db, organization_id, policy_id, body, actor_id=actor_id,
        ),
    )


# ── Holidays ────────────────────────────────────────────────────────

@router.get("/holidays", response_model=list[HolidayEntryOut])
async def list_holidays(
    organization_id: str,
    from_date: date = Query(...),
    to_date: date = Query(...),
    class_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Stored, generated and exception holidays for display, by start date."""
    return await CalendarService.list_holidays(
        db, organization_id, from_date, to_date, class_id,
    )


@router.get("/holidays/upcoming", response_model=list[HolidayOut])
async def upcoming_holidays(
    organization_id: str,
    limit: Optional[int] = Query(None, ge=1, le=50),
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    return await CalendarService.get_upcoming_holidays(
        db, organization_id, today=today, limit=limit,
    )


@router.post(
    "/holidays",
    response_model=HolidayOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_holiday(
    organization_id: str,
    body: HolidayCreate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: CalendarService.create_holiday(db, organization_id, body, actor_id=actor_id),
    )


@router.post(
    "/holidays/bulk",
    response_model=list[HolidayOut],
    status_code=status.HTTP_201_CREATED,
)
async def bulk_create_holidays(
    organization_id: str,
    body: HolidayBulkCreate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: CalendarService.bulk_create_holidays(
            db, organization_id, body, actor_id=actor_id,
        ),
    )


@router.patch("/holidays/{holiday_id}", response_model=HolidayOut)
async def update_holiday(
    organization_id: str,
    holiday_id: str,
    body: HolidayUpdate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Edit a stored holiday. Generated weekend ids are rejected as read-only."""
    return await retry_on_conflict(
        db,
        lambda: CalendarService.update_holiday(
            db, organization_id, holiday_id, body, actor_id=actor_id,
        ),
    )


@router.delete("/holidays/{holiday_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_holiday(
    organization_id: str,
    holiday_id: str,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    await retry_on_conflict(
        db,
        lambda: CalendarService.delete_holiday(
            db, organization_id, holiday_id, actor_id=actor_id,
        ),
    )


# ── Resolved calendar ───────────────────────────────────────────────

@router.get("/holiday-calendar", response_model=list[ResolvedDayOut])
async def holiday_calendar(
    organization_id: str,
    from_date: date = Query(...),
    to_date: date = Query(...),
    class_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Every non-working date in the range with its type and source."""
    return await CalendarService.get_holiday_calendar(
        db, organization_id, from_date, to_date, class_id,
    )


@router.get("/working-day", response_model=WorkingDayCheckOut)
async def working_day(
    organization_id: str,
    on: date = Query(...),
    class_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    working = await resolver.is_working_day(db, organization_id, on, class_id)
    return WorkingDayCheckOut(date=on, is_working_day=working)


# ── Calendar exceptions ─────────────────────────────────────────────

@router.get("/exceptions", response_model=list[CalendarExceptionOut])
async def list_exceptions(
    organization_id: str,
    from_date: date = Query(...),
    to_date: date = Query(...),
    override_type: Optional[OverrideType] = Query(None),
    is_applicable_to_all_classes: Optional[bool] = Query(None),
    class_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await CalendarService.list_exceptions(
        db, organization_id, from_date, to_date,
        override_type=override_type,
        is_applicable_to_all_classes=is_applicable_to_all_classes,
        class_id=class_id,
    )


@router.get("/exceptions/{exception_id}", response_model=CalendarExceptionOut)
async def get_exception(
    organization_id: str,
    exception_id: str,
    db: AsyncSession = Depends(get_db),
):
    return await CalendarService.get_exception(db, organization_id, exception_id)


@router.post(
    "/exceptions",
    response_model=CalendarExceptionOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_exception(
    organization_id: str,
    body: CalendarExceptionCreate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: CalendarService.create_exception(
            db, organization_id, body, actor_id=actor_id,
        ),
    )


@router.post(
    "/exceptions/bulk",
    response_model=list[CalendarExceptionOut],
    status_code=status.HTTP_201_CREATED,
)
async def bulk_create_exceptions(
    organization_id: str,
    body: CalendarExceptionBulkCreate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """All-or-nothing: one invalid entry rejects the whole batch."""
    return await retry_on_conflict(
        db,
        lambda: CalendarService.bulk_create_exceptions(
            db, organization_id, body, actor_id=actor_id,
        ),
    )


@router.patch("/exceptions/{exception_id}", response_model=CalendarExceptionOut)
async def update_exception(
    organization_id: str,
    exception_id: str,
    body: CalendarExceptionUpdate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: CalendarService.update_exception(
            db, organization_id, exception_id, body, actor_id=actor_id,
        ),
    )


@router.delete("/exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_exception(
    organization_id: str,
    exception_id: str,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    await retry_on_conflict(
        db,
        lambda: CalendarService.delete_exception(
            db, organization_id, exception_id, actor_id=actor_id,
        ),
    )
