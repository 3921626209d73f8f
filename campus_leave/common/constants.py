"""Enums and constants for the leave/calendar engine — matching the stored column values."""

from __future__ import annotations

import enum
from decimal import Decimal


# ── Calendar ────────────────────────────────────────────────────────

class SaturdayOffPattern(str, enum.Enum):
    NONE = "NONE"
    SECOND_ONLY = "SECOND_ONLY"
    SECOND_AND_FOURTH = "SECOND_AND_FOURTH"
    ALL = "ALL"


class HolidayType(str, enum.Enum):
    SUNDAY = "SUNDAY"
    SATURDAY = "SATURDAY"
    SECOND_SATURDAY = "SECOND_SATURDAY"
    NATIONAL_HOLIDAY = "NATIONAL_HOLIDAY"
    FESTIVAL = "FESTIVAL"
    ORGANIZATION_HOLIDAY = "ORGANIZATION_HOLIDAY"
    OTHER = "OTHER"


class HolidaySource(str, enum.Enum):
    STORED = "STORED"
    GENERATED = "GENERATED"
    EXCEPTION = "EXCEPTION"


class OverrideType(str, enum.Enum):
    FORCE_WORKING = "FORCE_WORKING"
    FORCE_HOLIDAY = "FORCE_HOLIDAY"


# Synthesized from the working day policy, never persisted
WEEKEND_HOLIDAY_TYPES: frozenset[HolidayType] = frozenset(
    {HolidayType.SUNDAY, HolidayType.SATURDAY}
)

# Occurrences of Saturday that are off, per pattern (ALL / NONE handled directly)
SATURDAY_OCCURRENCES: dict[SaturdayOffPattern, tuple[int, ...]] = {
    SaturdayOffPattern.SECOND_ONLY: (2,),
    SaturdayOffPattern.SECOND_AND_FOURTH: (2, 4),
}

HOLIDAY_TYPE_LABELS: dict[HolidayType, str] = {
    HolidayType.SUNDAY: "Sunday",
    HolidayType.SATURDAY: "Saturday",
    HolidayType.SECOND_SATURDAY: "Second Saturday",
    HolidayType.NATIONAL_HOLIDAY: "National Holiday",
    HolidayType.FESTIVAL: "Festival",
    HolidayType.ORGANIZATION_HOLIDAY: "Organization Holiday",
    HolidayType.OTHER: "Other",
}


# ── Leave ───────────────────────────────────────────────────────────

class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


# Statuses that hold days on a balance and block overlapping requests
ACTIVE_LEAVE_STATUSES: tuple[LeaveStatus, ...] = (
    LeaveStatus.pending,
    LeaveStatus.approved,
)

HALF_DAY = Decimal("0.5")
ZERO = Decimal("0")


# ── Misc constants ──────────────────────────────────────────────────

DATE_FORMAT = "%Y-%m-%d"
SUMMARY_DATE_FORMAT = "%b %d, %Y"
