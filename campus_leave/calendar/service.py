"""Calendar service layer — working day policies, stored holidays, exceptions.

Business logic:
  - Working day policy periods per organization never overlap
  - SUNDAY / SATURDAY holidays are policy-derived: never stored, never editable
  - Calendar exceptions are either organization-wide or scoped to >= 1 class
  - Every write records an audit-trail entry
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.calendar import resolver
from campus_leave.calendar.models import CalendarException, Holiday, WorkingDayPolicy
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
    WorkingDayPolicyCreate,
    WorkingDayPolicyOut,
    WorkingDayPolicyUpdate,
)
from campus_leave.calendar.weekends import select_effective_policy
from campus_leave.common.audit import create_audit_entry
from campus_leave.common.concurrency import flush_or_conflict
from campus_leave.common.constants import WEEKEND_HOLIDAY_TYPES, HolidayType, OverrideType
from campus_leave.common.dates import ranges_overlap
from campus_leave.common.exceptions import (
    InvalidDateRangeError,
    InvalidExceptionScopeError,
    NotFoundException,
    OverlappingPolicyError,
    ReadOnlyHolidayError,
    ValidationException,
)
from campus_leave.directory.service import DirectoryService

logger = logging.getLogger(__name__)


def _policy_snapshot(policy: WorkingDayPolicy) -> dict[str, Any]:
    return {
        "sunday_off": policy.sunday_off,
        "saturday_off_pattern": policy.saturday_off_pattern.value,
        "effective_from": policy.effective_from.isoformat(),
        "effective_to": policy.effective_to.isoformat() if policy.effective_to else None,
    }


def _holiday_snapshot(holiday: Holiday) -> dict[str, Any]:
    return {
        "start_date": holiday.start_date.isoformat(),
        "end_date": holiday.end_date.isoformat(),
        "holiday_type": holiday.holiday_type.value,
        "description": holiday.description,
    }


def _exception_snapshot(exc: CalendarException) -> dict[str, Any]:
    return {
        "date": exc.date.isoformat(),
        "override_type": exc.override_type.value,
        "is_applicable_to_all_classes": exc.is_applicable_to_all_classes,
        "class_ids": exc.class_ids,
        "reason": exc.reason,
    }


def _check_holiday_fields(
    start_date: date, end_date: date, holiday_type: HolidayType
) -> None:
    if end_date < start_date:
        raise InvalidDateRangeError(start_date, end_date)
    if holiday_type in WEEKEND_HOLIDAY_TYPES:
        raise ValidationException(
            {"holiday_type": [
                f"{holiday_type.value} holidays are generated from the working "
                "day policy and cannot be stored."
            ]}
        )


def _check_exception_scope(all_classes: bool, class_ids: Sequence[str]) -> None:
    if not all_classes and not class_ids:
        raise InvalidExceptionScopeError()


# ═════════════════════════════════════════════════════════════════════
# CalendarService
# ═════════════════════════════════════════════════════════════════════


class CalendarService:
    """Async calendar operations: policies, holidays, exceptions, queries."""

    # ─────────────────────────────────────────────────────────────────
    # Working day policies
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _ensure_no_policy_overlap(
        db: AsyncSession,
        organization_id: str,
        effective_from: date,
        effective_to: Optional[date],
        *,
        exclude_id: Optional[str] = None,
    ) -> None:
        if effective_to is not None and effective_to < effective_from:
            raise InvalidDateRangeError(effective_from, effective_to)

        query = select(WorkingDayPolicy).where(
            WorkingDayPolicy.organization_id == organization_id
        )
        if exclude_id is not None:
            query = query.where(WorkingDayPolicy.id != exclude_id)
        result = await db.execute(query)

        clashing = [
            p.id
            for p in result.scalars().all()
            if ranges_overlap(effective_from, effective_to, p.effective_from, p.effective_to)
        ]
        if clashing:
            logger.info(
                "Rejected overlapping working day policy for org %s: %s",
                organization_id, clashing,
            )
            raise OverlappingPolicyError(clashing)

    @staticmethod
    async def create_policy(
        db: AsyncSession,
        organization_id: str,
        data: WorkingDayPolicyCreate,
        *,
        actor_id: Optional[str] = None,
    ) -> WorkingDayPolicyOut:
        await DirectoryService.get_organization(db, organization_id)
        await CalendarService._ensure_no_policy_overlap(
            db, organization_id, data.effective_from, data.effective_to,
        )

        policy = WorkingDayPolicy(
            organization_id=organization_id,
            sunday_off=data.sunday_off,
            saturday_off_pattern=data.saturday_off_pattern,
            effective_from=data.effective_from,
            effective_to=data.effective_to,
        )
        db.add(policy)
        await flush_or_conflict(db, what="working day policy")

        await create_audit_entry(
            db,
            action="create",
            entity_type="working_day_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            new_values=_policy_snapshot(policy),
        )
        logger.info("Created working day policy %s for org %s", policy.id, organization_id)
        return WorkingDayPolicyOut.model_validate(policy)

    @staticmethod
    async def update_policy(
        db: AsyncSession,
        organization_id: str,
        policy_id: str,
        data: WorkingDayPolicyUpdate,
        *,
        actor_id: Optional[str] = None,
    ) -> WorkingDayPolicyOut:
        policy = await db.get(WorkingDayPolicy, policy_id)
        if policy is None or policy.organization_id != organization_id:
            raise NotFoundException("WorkingDayPolicy", policy_id)

        old_values = _policy_snapshot(policy)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("effective_from", policy.effective_from) is None:
            raise ValidationException({"effective_from": ["Effective from is required."]})

        effective_from = changes.get("effective_from", policy.effective_from)
        effective_to = changes.get("effective_to", policy.effective_to)
        await CalendarService._ensure_no_policy_overlap(
            db, organization_id, effective_from, effective_to, exclude_id=policy.id,
        )

        for field, value in changes.items():
            if field in ("sunday_off", "saturday_off_pattern") and value is None:
                continue
            setattr(policy, field, value)
        await flush_or_conflict(db, what="working day policy")

        await create_audit_entry(
            db,
            action="update",
            entity_type="working_day_policy",
            entity_id=policy.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_policy_snapshot(policy),
        )
        return WorkingDayPolicyOut.model_validate(policy)

    @staticmethod
    async def list_policies(
        db: AsyncSession, organization_id: str
    ) -> list[WorkingDayPolicyOut]:
        result = await db.execute(
            select(WorkingDayPolicy)
            .where(WorkingDayPolicy.organization_id == organization_id)
            .order_by(WorkingDayPolicy.effective_from)
        )
        return [WorkingDayPolicyOut.model_validate(p) for p in result.scalars().all()]

    @staticmethod
    async def get_effective_policy(
        db: AsyncSession, organization_id: str, day: date
    ) -> Optional[WorkingDayPolicyOut]:
        policies = await resolver.load_policies(db, organization_id, day, day)
        policy = select_effective_policy(policies, day)
        return WorkingDayPolicyOut.model_validate(policy) if policy else None

    # ─────────────────────────────────────────────────────────────────
    # Stored holidays
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def _build_holiday(
        organization_id: str, data: HolidayCreate, actor_id: Optional[str]
    ) -> Holiday:
        end_date = data.end_date or data.start_date
        _check_holiday_fields(data.start_date, end_date, data.holiday_type)
        return Holiday(
            organization_id=organization_id,
            start_date=data.start_date,
            end_date=end_date,
            holiday_type=data.holiday_type,
            description=data.description.strip(),
            created_by=actor_id,
        )

    @staticmethod
    async def create_holiday(
        db: AsyncSession,
        organization_id: str,
        data: HolidayCreate,
        *,
        actor_id: Optional[str] = None,
    ) -> HolidayOut:
        created = await CalendarService.bulk_create_holidays(
            db, organization_id, HolidayBulkCreate(holidays=[data]), actor_id=actor_id,
        )
        return created[0]

    @staticmethod
    async def bulk_create_holidays(
        db: AsyncSession,
        organization_id: str,
        data: HolidayBulkCreate,
        *,
        actor_id: Optional[str] = None,
    ) -> list[HolidayOut]:
        """Create several holidays; one invalid entry rejects the whole batch."""
        await DirectoryService.get_organization(db, organization_id)

        holidays: list[Holiday] = []
        for index, item in enumerate(data.holidays):
            try:
                holidays.append(
                    CalendarService._build_holiday(organization_id, item, actor_id)
                )
            except ValidationException as exc:
                if len(data.holidays) == 1:
                    raise
                raise ValidationException(
                    {f"holidays.{index}.{field}": msgs for field, msgs in exc.errors.items()}
                ) from exc

        db.add_all(holidays)
        await flush_or_conflict(db, what="holiday")

        for holiday in holidays:
            await create_audit_entry(
                db,
                action="create",
                entity_type="holiday",
                entity_id=holiday.id,
                actor_id=actor_id,
                new_values=_holiday_snapshot(holiday),
            )
        logger.info("Created %d holiday(s) for org %s", len(holidays), organization_id)
        return [HolidayOut.model_validate(h) for h in holidays]

    @staticmethod
    async def _get_editable_holiday(
        db: AsyncSession, organization_id: str, holiday_id: str
    ) -> Holiday:
        if resolver.is_synthetic_holiday_id(holiday_id):
            raise ReadOnlyHolidayError(holiday_id)
        holiday = await db.get(Holiday, holiday_id)
        if holiday is None or holiday.organization_id != organization_id:
            raise NotFoundException("Holiday", holiday_id)
        if holiday.holiday_type in WEEKEND_HOLIDAY_TYPES:
            raise ReadOnlyHolidayError(holiday_id)
        return holiday

    @staticmethod
    async def update_holiday(
        db: AsyncSession,
        organization_id: str,
        holiday_id: str,
        data: HolidayUpdate,
        *,
        actor_id: Optional[str] = None,
    ) -> HolidayOut:
        holiday = await CalendarService._get_editable_holiday(db, organization_id, holiday_id)
        old_values = _holiday_snapshot(holiday)

        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        start_date = changes.get("start_date", holiday.start_date)
        end_date = changes.get("end_date", holiday.end_date)
        holiday_type = changes.get("holiday_type", holiday.holiday_type)
        _check_holiday_fields(start_date, end_date, holiday_type)

        holiday.start_date = start_date
        holiday.end_date = end_date
        holiday.holiday_type = holiday_type
        if "description" in changes:
            holiday.description = changes["description"].strip()
        await flush_or_conflict(db, what="holiday")

        await create_audit_entry(
            db,
            action="update",
            entity_type="holiday",
            entity_id=holiday.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_holiday_snapshot(holiday),
        )
        return HolidayOut.model_validate(holiday)

    @staticmethod
    async def delete_holiday(
        db: AsyncSession,
        organization_id: str,
        holiday_id: str,
        *,
        actor_id: Optional[str] = None,
    ) -> None:
        holiday = await CalendarService._get_editable_holiday(db, organization_id, holiday_id)
        old_values = _holiday_snapshot(holiday)
        await db.delete(holiday)
        await flush_or_conflict(db, what="holiday")

        await create_audit_entry(
            db,
            action="delete",
            entity_type="holiday",
            entity_id=holiday_id,
            actor_id=actor_id,
            old_values=old_values,
        )
        logger.info("Deleted holiday %s for org %s", holiday_id, organization_id)

    # ─────────────────────────────────────────────────────────────────
    # Calendar queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_holiday_calendar(
        db: AsyncSession,
        organization_id: str,
        start: date,
        end: date,
        class_id: Optional[str] = None,
    ) -> list[ResolvedDayOut]:
        days = await resolver.resolve_holiday_calendar(
            db, organization_id, start, end, class_id,
        )
        return [ResolvedDayOut.model_validate(d) for d in days]

    @staticmethod
    async def list_holidays(
        db: AsyncSession,
        organization_id: str,
        start: date,
        end: date,
        class_id: Optional[str] = None,
    ) -> list[HolidayEntryOut]:
        entries = await resolver.list_holiday_entries(
            db, organization_id, start, end, class_id,
        )
        return [HolidayEntryOut.model_validate(e) for e in entries]

    @staticmethod
    async def get_upcoming_holidays(
        db: AsyncSession,
        organization_id: str,
        *,
        today: date,
        limit: Optional[int] = None,
    ) -> list[HolidayOut]:
        holidays = await resolver.get_upcoming_holidays(
            db, organization_id, today=today, limit=limit,
        )
        return [HolidayOut.model_validate(h) for h in holidays]

    # ─────────────────────────────────────────────────────────────────
    # Calendar exceptions
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _build_exception(
        db: AsyncSession,
        organization_id: str,
        data: CalendarExceptionCreate,
        actor_id: Optional[str],
    ) -> CalendarException:
        _check_exception_scope(data.is_applicable_to_all_classes, data.class_ids)
        classes = []
        if not data.is_applicable_to_all_classes:
            classes = await DirectoryService.get_classes(db, organization_id, data.class_ids)
        return CalendarException(
            organization_id=organization_id,
            date=data.date,
            override_type=data.override_type,
            is_applicable_to_all_classes=data.is_applicable_to_all_classes,
            classes=classes,
            reason=data.reason.strip(),
            created_by=actor_id,
        )

    @staticmethod
    async def create_exception(
        db: AsyncSession,
        organization_id: str,
        data: CalendarExceptionCreate,
        *,
        actor_id: Optional[str] = None,
    ) -> CalendarExceptionOut:
        created = await CalendarService.bulk_create_exceptions(
            db,
            organization_id,
            CalendarExceptionBulkCreate(exceptions=[data]),
            actor_id=actor_id,
        )
        return created[0]

    @staticmethod
    async def bulk_create_exceptions(
        db: AsyncSession,
        organization_id: str,
        data: CalendarExceptionBulkCreate,
        *,
        actor_id: Optional[str] = None,
    ) -> list[CalendarExceptionOut]:
        """Create several exceptions; every entry is validated before any is stored."""
        await DirectoryService.get_organization(db, organization_id)

        exceptions = [
            await CalendarService._build_exception(db, organization_id, item, actor_id)
            for item in data.exceptions
        ]
        db.add_all(exceptions)
        await flush_or_conflict(db, what="calendar exception")

        for exc in exceptions:
            await create_audit_entry(
                db,
                action="create",
                entity_type="calendar_exception",
                entity_id=exc.id,
                actor_id=actor_id,
                new_values=_exception_snapshot(exc),
            )
        logger.info(
            "Created %d calendar exception(s) for org %s", len(exceptions), organization_id,
        )
        return [CalendarExceptionOut.model_validate(e) for e in exceptions]

    @staticmethod
    async def _get_exception(
        db: AsyncSession, organization_id: str, exception_id: str
    ) -> CalendarException:
        result = await db.execute(
            select(CalendarException).where(
                CalendarException.id == exception_id,
                CalendarException.organization_id == organization_id,
            )
        )
        exc = result.scalars().first()
        if exc is None:
            raise NotFoundException("CalendarException", exception_id)
        return exc

    @staticmethod
    async def update_exception(
        db: AsyncSession,
        organization_id: str,
        exception_id: str,
        data: CalendarExceptionUpdate,
        *,
        actor_id: Optional[str] = None,
    ) -> CalendarExceptionOut:
        exc = await CalendarService._get_exception(db, organization_id, exception_id)
        old_values = _exception_snapshot(exc)
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}

        all_classes = changes.get("is_applicable_to_all_classes", exc.is_applicable_to_all_classes)
        class_ids = changes.get("class_ids", exc.class_ids)
        _check_exception_scope(all_classes, class_ids)

        if all_classes:
            exc.classes = []
        elif "class_ids" in changes:
            exc.classes = await DirectoryService.get_classes(db, organization_id, class_ids)
        exc.is_applicable_to_all_classes = all_classes

        if "date" in changes:
            exc.date = changes["date"]
        if "override_type" in changes:
            exc.override_type = changes["override_type"]
        if "reason" in changes:
            exc.reason = changes["reason"].strip()
        await flush_or_conflict(db, what="calendar exception")

        await create_audit_entry(
            db,
            action="update",
            entity_type="calendar_exception",
            entity_id=exc.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_exception_snapshot(exc),
        )
        return CalendarExceptionOut.model_validate(exc)

    @staticmethod
    async def delete_exception(
        db: AsyncSession,
        organization_id: str,
        exception_id: str,
        *,
        actor_id: Optional[str] = None,
    ) -> None:
        exc = await CalendarService._get_exception(db, organization_id, exception_id)
        old_values = _exception_snapshot(exc)
        await db.delete(exc)
        await flush_or_conflict(db, what="calendar exception")

        await create_audit_entry(
            db,
            action="delete",
            entity_type="calendar_exception",
            entity_id=exception_id,
            actor_id=actor_id,
            old_values=old_values,
        )

    @staticmethod
    async def list_exceptions(
        db: AsyncSession,
        organization_id: str,
        start: date,
        end: date,
        *,
        override_type: Optional[OverrideType] = None,
        is_applicable_to_all_classes: Optional[bool] = None,
        class_id: Optional[str] = None,
    ) -> list[CalendarExceptionOut]:
        """Exceptions dated within the range, optionally narrowed.

        ``class_id`` matches exceptions scoped to that class; all-classes
        exceptions are selected through ``is_applicable_to_all_classes``.
        """
        if end < start:
            raise InvalidDateRangeError(start, end)
        exceptions = await resolver.load_exceptions(db, organization_id, start, end)
        if override_type is not None:
            exceptions = [e for e in exceptions if e.override_type == override_type]
        if is_applicable_to_all_classes is not None:
            exceptions = [
                e for e in exceptions
                if e.is_applicable_to_all_classes == is_applicable_to_all_classes
            ]
        if class_id is not None:
            exceptions = [e for e in exceptions if class_id in e.class_ids]
        return [CalendarExceptionOut.model_validate(e) for e in exceptions]

    @staticmethod
    async def get_exception(
        db: AsyncSession, organization_id: str, exception_id: str
    ) -> CalendarExceptionOut:
        exc = await CalendarService._get_exception(db, organization_id, exception_id)
        return CalendarExceptionOut.model_validate(exc)
