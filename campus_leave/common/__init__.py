"""Common module — shared utilities for Campus Leave."""

from campus_leave.common.audit import AuditTrail, create_audit_entry
from campus_leave.common.concurrency import flush_or_conflict, retry_on_conflict
from campus_leave.common.constants import (
    ACTIVE_LEAVE_STATUSES,
    DATE_FORMAT,
    HALF_DAY,
    HolidaySource,
    HolidayType,
    LeaveStatus,
    OverrideType,
    SaturdayOffPattern,
)
from campus_leave.common.exceptions import (
    AppException,
    ConcurrencyConflictError,
    ConflictError,
    DuplicateBalanceError,
    ForbiddenException,
    InsufficientBalanceError,
    InvalidDateRangeError,
    InvalidExceptionScopeError,
    InvalidTransitionError,
    NoWorkingDaysError,
    NotFoundException,
    OverlappingLeaveError,
    OverlappingPolicyError,
    RangeTooLargeError,
    ReadOnlyHolidayError,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Audit
    "AuditTrail",
    "create_audit_entry",
    # Concurrency
    "flush_or_conflict",
    "retry_on_conflict",
    # Constants / Enums
    "ACTIVE_LEAVE_STATUSES",
    "DATE_FORMAT",
    "HALF_DAY",
    "HolidaySource",
    "HolidayType",
    "LeaveStatus",
    "OverrideType",
    "SaturdayOffPattern",
    # Exceptions
    "AppException",
    "ConcurrencyConflictError",
    "ConflictError",
    "DuplicateBalanceError",
    "ForbiddenException",
    "InsufficientBalanceError",
    "InvalidDateRangeError",
    "InvalidExceptionScopeError",
    "InvalidTransitionError",
    "NoWorkingDaysError",
    "NotFoundException",
    "OverlappingLeaveError",
    "OverlappingPolicyError",
    "RangeTooLargeError",
    "ReadOnlyHolidayError",
    "ValidationException",
    "register_exception_handlers",
]
