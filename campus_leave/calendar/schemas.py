"""Calendar Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update   → request bodies (write)
  - *Out                → response bodies (read)

Business rules (scope invariants, read-only weekend types, policy overlap)
are enforced in the service layer so they surface as typed engine errors.
"""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from campus_leave.common.constants import (
    HolidaySource,
    HolidayType,
    OverrideType,
    SaturdayOffPattern,
)


# ═════════════════════════════════════════════════════════════════════
# Working day policy
# ═════════════════════════════════════════════════════════════════════


class WorkingDayPolicyCreate(BaseModel):
    sunday_off: bool = True
    saturday_off_pattern: SaturdayOffPattern = SaturdayOffPattern.SECOND_ONLY
    effective_from: date
    effective_to: Optional[date] = None


class WorkingDayPolicyUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    sunday_off: Optional[bool] = None
    saturday_off_pattern: Optional[SaturdayOffPattern] = None
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None


class WorkingDayPolicyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    sunday_off: bool
    saturday_off_pattern: SaturdayOffPattern
    effective_from: date
    effective_to: Optional[date] = None
    created_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Stored holidays
# ═════════════════════════════════════════════════════════════════════


class HolidayCreate(BaseModel):
    start_date: date
    end_date: Optional[date] = Field(
        None, description="Defaults to start_date for single-day holidays"
    )
    holiday_type: HolidayType
    description: str = Field(..., min_length=1, max_length=255)


class HolidayBulkCreate(BaseModel):
    holidays: list[HolidayCreate] = Field(..., min_length=1)


class HolidayUpdate(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    holiday_type: Optional[HolidayType] = None
    description: Optional[str] = Field(None, min_length=1, max_length=255)


class HolidayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    start_date: date
    end_date: date
    holiday_type: HolidayType
    description: str
    created_at: datetime


class HolidayEntryOut(BaseModel):
    """Display entry; generated weekend days carry synthetic ids."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    start_date: date
    end_date: date
    holiday_type: HolidayType
    description: str
    source: HolidaySource
    editable: bool


class ResolvedDayOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    date: date
    holiday_type: HolidayType
    description: str
    source: HolidaySource
    holiday_id: str


class WorkingDayCheckOut(BaseModel):
    date: date
    is_working_day: bool


# ═════════════════════════════════════════════════════════════════════
# Calendar exceptions
# ═════════════════════════════════════════════════════════════════════


class CalendarExceptionCreate(BaseModel):
    date: date
    override_type: OverrideType
    is_applicable_to_all_classes: bool = True
    class_ids: list[str] = Field(default_factory=list)
    reason: str = Field(..., min_length=1, max_length=500)


class CalendarExceptionBulkCreate(BaseModel):
    exceptions: list[CalendarExceptionCreate] = Field(..., min_length=1)


class CalendarExceptionUpdate(BaseModel):
    # dt.date: the field name shadows the type inside the class body
    date: Optional[dt.date] = None
    override_type: Optional[OverrideType] = None
    is_applicable_to_all_classes: Optional[bool] = None
    class_ids: Optional[list[str]] = None
    reason: Optional[str] = Field(None, min_length=1, max_length=500)


class CalendarExceptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    organization_id: str
    date: date
    override_type: OverrideType
    is_applicable_to_all_classes: bool
    class_ids: list[str] = Field(default_factory=list)
    reason: str
    created_at: datetime
