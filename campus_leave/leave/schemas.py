"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request  → request bodies (write)
  - *Out                          → response bodies (read)

Date-range rules (order, 30-day span, working days) are checked by the
working-day calculator, not here, so callers receive the typed engine errors.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from campus_leave.common.constants import HolidayType, LeaveStatus


# ═════════════════════════════════════════════════════════════════════
# Leave Type / Allocation
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=10)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class LeaveTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name: str
    description: Optional[str] = None


class LeaveAllocationCreate(BaseModel):
    """Entitlement policy; business rules are checked by the service."""

    leave_type_id: str
    name: str = Field(..., min_length=1, max_length=150)
    description: Optional[str] = None
    total_days: Decimal = Field(..., ge=0)
    max_carry_forward_days: Decimal = Field(Decimal("0"), ge=0)
    roles: list[str] = Field(default_factory=list)
    effective_from: date
    effective_to: Optional[date] = None


class LeaveAllocationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=150)
    description: Optional[str] = None
    total_days: Optional[Decimal] = Field(None, ge=0)
    max_carry_forward_days: Optional[Decimal] = Field(None, ge=0)
    roles: Optional[list[str]] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None


class LeaveAllocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    leave_type: LeaveTypeOut
    name: str
    description: Optional[str] = None
    total_days: Decimal
    max_carry_forward_days: Decimal
    roles: list[str]
    effective_from: date
    effective_to: Optional[date] = None


# ═════════════════════════════════════════════════════════════════════
# Leave Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceCreate(BaseModel):
    user_id: str
    leave_allocation_id: str
    total_allocated: Optional[Decimal] = Field(
        None, ge=0, description="Defaults to the allocation's total_days"
    )
    carried_forward: Decimal = Field(Decimal("0"), ge=0)


class LeaveBalanceUpdate(BaseModel):
    """Admin edit. ``used`` is deliberately absent: it only moves with requests."""

    model_config = ConfigDict(extra="forbid")

    total_allocated: Optional[Decimal] = Field(None, ge=0)
    carried_forward: Optional[Decimal] = Field(None, ge=0)


class LeaveBalanceOut(BaseModel):
    """Balance with the derived ``available`` figure."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    leave_allocation_id: str
    allocation_name: str
    leave_type_name: str
    total_allocated: Decimal
    used: Decimal
    pending: Decimal
    carried_forward: Decimal
    available: Decimal


class BalanceSummaryOut(BaseModel):
    user_id: str
    total_allocated: Decimal
    carried_forward: Decimal
    used: Decimal
    pending: Decimal
    available: Decimal
    balances: list[LeaveBalanceOut] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Working-day calculation
# ═════════════════════════════════════════════════════════════════════


class WorkingDaysRequest(BaseModel):
    start_date: date
    end_date: date
    is_half_day: bool = False
    exclude_request_id: Optional[str] = Field(
        None, description="Request being edited; excluded from the overlap check"
    )


class NonWorkingDateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    description: str
    type: HolidayType


class WorkingDaysOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    working_days: Decimal
    total_days: int
    holidays: list[NonWorkingDateOut] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Leave Request
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for applying for leave against one of the user's balances."""

    leave_balance_id: str
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    is_half_day: bool = False
    reason: Optional[str] = Field(None, max_length=1000)


class LeaveRequestUpdate(BaseModel):
    """Edit a pending request; omitted fields keep their stored value."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_half_day: Optional[bool] = None
    reason: Optional[str] = Field(None, max_length=1000)


class LeaveRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    leave_balance_id: str
    leave_type_name: str
    start_date: date
    end_date: date
    number_of_days: Decimal
    is_half_day: bool
    status: LeaveStatus
    reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewer_comments: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class LeaveApproveRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=500)


class LeaveRejectRequest(BaseModel):
    """A rejection always carries a reason for the requester."""

    reason: str = Field(..., min_length=1, max_length=500)

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("A rejection reason is required.")
        return v.strip()


class LeaveCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
