"""Engine exceptions and RFC 7807 Problem Detail error handlers.

Every business-rule failure is an ``AppException`` carrying enough structure
(field map plus optional extra members) for the caller to point at the
offending field, date or conflicting request.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://campus-leave.local/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        self.extra = extra or {}
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ForbiddenException(AppException):
    """403 — the acting user may not perform this action."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    error_type = "validation-error"
    title = "Validation Error"

    def __init__(
        self,
        errors: dict[str, list[str]],
        *,
        detail: str = "One or more fields failed validation.",
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            status_code=422,
            error_type=type(self).error_type,
            title=type(self).title,
            detail=detail,
            errors=errors,
            extra=extra,
        )


class ConflictError(AppException):
    """409 — state conflicts with existing data."""

    error_type = "conflict"
    title = "Conflict"

    def __init__(
        self,
        detail: str,
        *,
        errors: Optional[dict[str, list[str]]] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            status_code=409,
            error_type=type(self).error_type,
            title=type(self).title,
            detail=detail,
            errors=errors,
            extra=extra,
        )


# ── Date range / working-day rules ──────────────────────────────────

class InvalidDateRangeError(ValidationException):
    error_type = "invalid-date-range"
    title = "Invalid Date Range"

    def __init__(self, start_date: date, end_date: date) -> None:
        super().__init__(
            {"end_date": [
                f"End date {end_date.isoformat()} must be on or after "
                f"start date {start_date.isoformat()}."
            ]},
            detail="End date must be on or after start date.",
        )


class RangeTooLargeError(ValidationException):
    error_type = "range-too-large"
    title = "Date Range Too Large"

    def __init__(self, span_days: int, max_days: int) -> None:
        super().__init__(
            {"end_date": [
                f"Date range cannot exceed {max_days} days (got {span_days}). "
                "Please submit separate leave requests."
            ]},
            detail=f"Date range cannot exceed {max_days} days.",
            extra={"max_span_days": max_days, "span_days": span_days},
        )


class NoWorkingDaysError(ValidationException):
    error_type = "no-working-days"
    title = "No Working Days"

    def __init__(self, start_date: date, end_date: date) -> None:
        super().__init__(
            {"dates": [
                "No valid working days available between "
                f"{start_date.isoformat()} and {end_date.isoformat()}. "
                "All days are holidays or weekends."
            ]},
            detail="Every day in the selected range is a holiday or weekend.",
        )


class OverlappingLeaveError(ConflictError):
    """Range overlaps pending/approved requests; ``conflicts`` lists them."""

    error_type = "overlapping-leave"
    title = "Overlapping Leave"

    def __init__(self, conflicts: Sequence[dict[str, Any]]) -> None:
        self.conflicts = list(conflicts)
        super().__init__(
            "You already have a pending or approved leave request "
            "overlapping with these dates.",
            errors={"dates": [c["summary"] for c in self.conflicts]},
            extra={"conflicting_leaves": self.conflicts},
        )


# ── Balance rules ───────────────────────────────────────────────────

class InsufficientBalanceError(ValidationException):
    error_type = "insufficient-balance"
    title = "Insufficient Balance"

    def __init__(self, leave_name: str, available: Any, requested: Any) -> None:
        super().__init__(
            {"balance": [
                f"Insufficient {leave_name} balance. "
                f"Available: {available}, Requested: {requested}."
            ]},
            detail=f"Insufficient {leave_name} balance.",
            extra={"available": str(available), "requested": str(requested)},
        )


class DuplicateBalanceError(ConflictError):
    error_type = "duplicate-balance"
    title = "Duplicate Balance"

    def __init__(self, user_id: str, leave_allocation_id: str) -> None:
        super().__init__(
            f"User '{user_id}' already has a balance for allocation "
            f"'{leave_allocation_id}'.",
            errors={"leave_allocation_id": [
                "A leave balance already exists for this user and allocation."
            ]},
        )


# ── Calendar rules ──────────────────────────────────────────────────

class ReadOnlyHolidayError(ValidationException):
    error_type = "read-only-holiday"
    title = "Read-only Holiday"

    def __init__(self, holiday_id: str) -> None:
        super().__init__(
            {"holiday": [
                f"Holiday '{holiday_id}' is generated from the working day policy "
                "and cannot be edited or deleted."
            ]},
            detail="Weekend holidays are policy-derived and read-only.",
        )


class InvalidExceptionScopeError(ValidationException):
    error_type = "invalid-exception-scope"
    title = "Invalid Exception Scope"

    def __init__(self) -> None:
        super().__init__(
            {"classes": [
                "Select at least one class, or make the exception applicable "
                "to all classes."
            ]},
        )


class OverlappingPolicyError(ValidationException):
    error_type = "overlapping-policy"
    title = "Overlapping Working Day Policy"

    def __init__(self, policy_ids: Sequence[str]) -> None:
        super().__init__(
            {"effective_from": [
                "Effective period overlaps existing working day policy "
                + ", ".join(f"'{p}'" for p in policy_ids)
                + "."
            ]},
            extra={"conflicting_policies": list(policy_ids)},
        )


# ── State machine / storage ─────────────────────────────────────────

class InvalidTransitionError(ValidationException):
    error_type = "invalid-transition"
    title = "Invalid Status Transition"

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            {"status": [
                f"Leave request is already {current}; cannot move to {target}."
            ]},
        )


class ConcurrencyConflictError(ConflictError):
    """Storage-level conflict (serialization failure, stale version,
    exclusion constraint). Safe to retry the whole operation."""

    error_type = "concurrency-conflict"
    title = "Concurrent Modification"

    def __init__(self, detail: str) -> None:
        super().__init__(detail, extra={"retryable": True})


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    body.update(exc.extra)
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
