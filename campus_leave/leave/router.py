"""Leave router — leave types, allocations, balances, working days, requests.

The acting user comes from the ``X-User-Id`` header. Reviewer authorization is
enforced upstream of this service.
"""


from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.common.concurrency import retry_on_conflict
from campus_leave.common.constants import LeaveStatus
from campus_leave.database import get_db
from campus_leave.dependencies import get_actor_id, get_now
from campus_leave.leave.allocations import AllocationService
from campus_leave.leave.ledger import LedgerService
from campus_leave.leave.schemas import (
    BalanceSummaryOut,
    LeaveAllocationCreate,
    LeaveAllocationOut,
    LeaveAllocationUpdate,
    LeaveApproveRequest,
    LeaveBalanceCreate,
    LeaveBalanceOut,
    LeaveBalanceUpdate,
    LeaveCancelRequest,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRequestUpdate,
    LeaveTypeCreate,
    LeaveTypeOut,
    WorkingDaysOut,
    WorkingDaysRequest,
)
from campus_leave.leave.service import LeaveRequestService

router = APIRouter(prefix="", tags=["leave"])


# ── Leave types ─────────────────────────────────────────────────────

@router.get("/types", response_model=list[LeaveTypeOut])
async def list_leave_types(db: AsyncSession = Depends(get_db)):
    return await AllocationService.list_leave_types(db)


@router.post("/types", response_model=LeaveTypeOut, status_code=status.HTTP_201_CREATED)
async def create_leave_type(
    body: LeaveTypeCreate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db, lambda: AllocationService.create_leave_type(db, body, actor_id=actor_id),
    )


# ── Allocations ─────────────────────────────────────────────────────

@router.get(
    "/organizations/{organization_id}/allocations",
    response_model=list[LeaveAllocationOut],
)
async def list_allocations(
    organization_id: str,
    role_id: Optional[str] = Query(None),
    on: Optional[date] = Query(None, description="Only allocations effective on this date"),
    db: AsyncSession = Depends(get_db),
):
    return await AllocationService.list_allocations(
        db, organization_id, role_id=role_id, on=on,
    )


@router.post(
    "/organizations/{organization_id}/allocations",
    response_model=LeaveAllocationOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_allocation(
    organization_id: str,
    body: LeaveAllocationCreate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: AllocationService.create_allocation(
            db, organization_id, body, actor_id=actor_id,
        ),
    )


@router.patch(
    "/organizations/{organization_id}/allocations/{allocation_id}",
    response_model=LeaveAllocationOut,
)
async def update_allocation(
    organization_id: str,
    allocation_id: str,
    body: LeaveAllocationUpdate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: AllocationService.update_allocation(
            db, organization_id, allocation_id, body, actor_id=actor_id,
        ),
    )


@router.delete(
    "/organizations/{organization_id}/allocations/{allocation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_allocation(
    organization_id: str,
    allocation_id: str,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Refused while any leave balance still references the allocation."""
    await retry_on_conflict(
        db,
        lambda: AllocationService.delete_allocation(
            db, organization_id, allocation_id, actor_id=actor_id,
        ),
    )


# ── Balances ────────────────────────────────────────────────────────

@router.post("/balances", response_model=LeaveBalanceOut, status_code=status.HTTP_201_CREATED)
async def create_balance(
    body: LeaveBalanceCreate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db, lambda: LedgerService.create_balance(db, body, actor_id=actor_id),
    )


@router.patch("/balances/{balance_id}", response_model=LeaveBalanceOut)
async def update_balance(
    balance_id: str,
    body: LeaveBalanceUpdate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Admin edit of allocated / carried-forward days. ``used`` cannot be set."""
    return await retry_on_conflict(
        db, lambda: LedgerService.update_balance(db, balance_id, body, actor_id=actor_id),
    )


@router.get("/users/{user_id}/balances", response_model=list[LeaveBalanceOut])
async def user_balances(user_id: str, db: AsyncSession = Depends(get_db)):
    return await LedgerService.get_balances(db, user_id)


@router.get("/users/{user_id}/balances/summary", response_model=BalanceSummaryOut)
async def user_balance_summary(user_id: str, db: AsyncSession = Depends(get_db)):
    return await LedgerService.get_summary(db, user_id)


# ── POST /working-days ──────────────────────────────────────────────

@router.post("/working-days", response_model=WorkingDaysOut)
async def working_days(
    body: WorkingDaysRequest,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    """Working days, excluded dates and conflicts for a proposed range."""
    return await LeaveRequestService.preview_working_days(
        db,
        actor_id,
        body.start_date,
        body.end_date,
        is_half_day=body.is_half_day,
        exclude_request_id=body.exclude_request_id,
    )


# ── Leave requests ──────────────────────────────────────────────────

@router.post("/requests", response_model=LeaveRequestOut, status_code=status.HTTP_201_CREATED)
async def apply_leave(
    body: LeaveRequestCreate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db, lambda: LeaveRequestService.create_request(db, actor_id, body),
    )


@router.get("/requests", response_model=list[LeaveRequestOut])
async def my_requests(
    status_filter: Optional[LeaveStatus] = Query(None, alias="status"),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveRequestService.list_requests(
        db, actor_id, status=status_filter, from_date=from_date, to_date=to_date,
    )


@router.get(
    "/organizations/{organization_id}/review-queue",
    response_model=list[LeaveRequestOut],
)
async def review_queue(
    organization_id: str,
    status_filter: LeaveStatus = Query(LeaveStatus.pending, alias="status"),
    class_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveRequestService.list_requests_for_review(
        db, organization_id, status=status_filter, class_id=class_id, user_id=user_id,
    )


@router.get("/requests/{request_id}", response_model=LeaveRequestOut)
async def get_request(request_id: str, db: AsyncSession = Depends(get_db)):
    return await LeaveRequestService.get_request(db, request_id)


@router.patch("/requests/{request_id}", response_model=LeaveRequestOut)
async def edit_request(
    request_id: str,
    body: LeaveRequestUpdate,
    actor_id: str = Depends(get_actor_id),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db, lambda: LeaveRequestService.update_request(db, request_id, actor_id, body),
    )


@router.put("/requests/{request_id}/approve", response_model=LeaveRequestOut)
async def approve_request(
    request_id: str,
    body: LeaveApproveRequest,
    actor_id: str = Depends(get_actor_id),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: LeaveRequestService.approve_request(
            db, request_id, actor_id, now=now, comment=body.comment,
        ),
    )


@router.put("/requests/{request_id}/reject", response_model=LeaveRequestOut)
async def reject_request(
    request_id: str,
    body: LeaveRejectRequest,
    actor_id: str = Depends(get_actor_id),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: LeaveRequestService.reject_request(
            db, request_id, actor_id, now=now, reason=body.reason,
        ),
    )


@router.put("/requests/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_request(
    request_id: str,
    body: LeaveCancelRequest,
    actor_id: str = Depends(get_actor_id),
    now: datetime = Depends(get_now),
    db: AsyncSession = Depends(get_db),
):
    return await retry_on_conflict(
        db,
        lambda: LeaveRequestService.cancel_request(
            db, request_id, actor_id, now=now, reason=body.reason,
        ),
    )
