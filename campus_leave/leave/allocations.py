"""Leave types and leave allocation (entitlement policy) administration."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.common.audit import create_audit_entry
from campus_leave.common.concurrency import flush_or_conflict
from campus_leave.common.exceptions import (
    ConflictError,
    InvalidDateRangeError,
    NotFoundException,
    ValidationException,
)
from campus_leave.directory.service import DirectoryService
from campus_leave.leave.ledger import check_day_quantity
from campus_leave.leave.models import LeaveAllocation, LeaveBalance, LeaveType
from campus_leave.leave.schemas import (
    LeaveAllocationCreate,
    LeaveAllocationOut,
    LeaveAllocationUpdate,
    LeaveTypeCreate,
    LeaveTypeOut,
)

logger = logging.getLogger(__name__)


def _allocation_snapshot(allocation: LeaveAllocation) -> dict[str, Any]:
    return {
        "name": allocation.name,
        "leave_type_id": allocation.leave_type_id,
        "total_days": str(allocation.total_days),
        "max_carry_forward_days": str(allocation.max_carry_forward_days),
        "roles": list(allocation.roles or []),
        "effective_from": allocation.effective_from.isoformat(),
        "effective_to": (
            allocation.effective_to.isoformat() if allocation.effective_to else None
        ),
    }


def _check_allocation_rules(
    total_days: Decimal,
    max_carry_forward_days: Decimal,
    roles: list[str],
    effective_from: date,
    effective_to: Optional[date],
) -> None:
    check_day_quantity(total_days, "total_days")
    check_day_quantity(max_carry_forward_days, "max_carry_forward_days")
    if max_carry_forward_days > total_days:
        raise ValidationException(
            {"max_carry_forward_days": [
                "Max carry forward days cannot exceed total days."
            ]}
        )
    if not roles:
        raise ValidationException({"roles": ["Select at least one role."]})
    if effective_to is not None and effective_to < effective_from:
        raise InvalidDateRangeError(effective_from, effective_to)


class AllocationService:

    # ── Leave types ─────────────────────────────────────────────────

    @staticmethod
    async def create_leave_type(
        db: AsyncSession,
        data: LeaveTypeCreate,
        *,
        actor_id: Optional[str] = None,
    ) -> LeaveTypeOut:
        code = data.code.strip().upper()
        existing = await db.execute(select(LeaveType.id).where(LeaveType.code == code))
        if existing.scalar() is not None:
            raise ConflictError(
                f"Leave type '{code}' already exists.",
                errors={"code": ["A leave type with this code already exists."]},
            )

        leave_type = LeaveType(code=code, name=data.name.strip(), description=data.description)
        db.add(leave_type)
        await flush_or_conflict(db, what="leave type")
        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_type",
            entity_id=leave_type.id,
            actor_id=actor_id,
            new_values={"code": code, "name": leave_type.name},
        )
        return LeaveTypeOut.model_validate(leave_type)

    @staticmethod
    async def list_leave_types(db: AsyncSession) -> list[LeaveTypeOut]:
        result = await db.execute(select(LeaveType).order_by(LeaveType.name))
        return [LeaveTypeOut.model_validate(lt) for lt in result.scalars().all()]

    # ── Allocations ─────────────────────────────────────────────────

    @staticmethod
    async def _get_allocation(
        db: AsyncSession, organization_id: str, allocation_id: str
    ) -> LeaveAllocation:
        allocation = await db.get(LeaveAllocation, allocation_id)
        if allocation is None or allocation.organization_id != organization_id:
            raise NotFoundException("LeaveAllocation", allocation_id)
        return allocation

    @staticmethod
    async def create_allocation(
        db: AsyncSession,
        organization_id: str,
        data: LeaveAllocationCreate,
        *,
        actor_id: Optional[str] = None,
    ) -> LeaveAllocationOut:
        await DirectoryService.get_organization(db, organization_id)
        leave_type = await db.get(LeaveType, data.leave_type_id)
        if leave_type is None:
            raise NotFoundException("LeaveType", data.leave_type_id)

        roles = sorted({r.strip() for r in data.roles if r.strip()})
        _check_allocation_rules(
            data.total_days,
            data.max_carry_forward_days,
            roles,
            data.effective_from,
            data.effective_to,
        )

        allocation = LeaveAllocation(
            organization_id=organization_id,
            leave_type=leave_type,
            name=data.name.strip(),
            description=data.description,
            total_days=data.total_days,
            max_carry_forward_days=data.max_carry_forward_days,
            roles=roles,
            effective_from=data.effective_from,
            effective_to=data.effective_to,
        )
        db.add(allocation)
        await flush_or_conflict(db, what="leave allocation")

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_allocation",
            entity_id=allocation.id,
            actor_id=actor_id,
            new_values=_allocation_snapshot(allocation),
        )
        logger.info("Created leave allocation %s for org %s", allocation.id, organization_id)
        return LeaveAllocationOut.model_validate(allocation)

    @staticmethod
    async def update_allocation(
        db: AsyncSession,
        organization_id: str,
        allocation_id: str,
        data: LeaveAllocationUpdate,
        *,
        actor_id: Optional[str] = None,
    ) -> LeaveAllocationOut:
        """Edit an allocation. Existing balances keep their own figures."""
        allocation = await AllocationService._get_allocation(db, organization_id, allocation_id)
        old_values = _allocation_snapshot(allocation)
        changes = data.model_dump(exclude_unset=True)

        for field in ("name", "total_days", "max_carry_forward_days", "roles", "effective_from"):
            if field in changes and changes[field] is None:
                del changes[field]
        if "roles" in changes:
            changes["roles"] = sorted({r.strip() for r in changes["roles"] if r.strip()})
        if "name" in changes:
            changes["name"] = changes["name"].strip()

        _check_allocation_rules(
            changes.get("total_days", allocation.total_days),
            changes.get("max_carry_forward_days", allocation.max_carry_forward_days),
            changes.get("roles", allocation.roles),
            changes.get("effective_from", allocation.effective_from),
            changes.get("effective_to", allocation.effective_to),
        )
        for field, value in changes.items():
            setattr(allocation, field, value)
        await flush_or_conflict(db, what="leave allocation")

        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_allocation",
            entity_id=allocation.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_allocation_snapshot(allocation),
        )
        return LeaveAllocationOut.model_validate(allocation)

    @staticmethod
    async def list_allocations(
        db: AsyncSession,
        organization_id: str,
        *,
        role_id: Optional[str] = None,
        on: Optional[date] = None,
    ) -> list[LeaveAllocationOut]:
        """Allocations of an organization, optionally for one role / date."""
        query = select(LeaveAllocation).where(
            LeaveAllocation.organization_id == organization_id
        )
        if on is not None:
            query = query.where(
                LeaveAllocation.effective_from <= on,
                LeaveAllocation.effective_to.is_(None)
                | (LeaveAllocation.effective_to >= on),
            )
        result = await db.execute(query.order_by(LeaveAllocation.name))
        allocations = result.scalars().all()
        if role_id is not None:
            # roles is a JSON list; filtered here to stay portable across dialects
            allocations = [a for a in allocations if role_id in (a.roles or [])]
        return [LeaveAllocationOut.model_validate(a) for a in allocations]

    @staticmethod
    async def delete_allocation(
        db: AsyncSession,
        organization_id: str,
        allocation_id: str,
        *,
        actor_id: Optional[str] = None,
    ) -> None:
        allocation = await AllocationService._get_allocation(db, organization_id, allocation_id)
        in_use = await db.execute(
            select(func.count())
            .select_from(LeaveBalance)
            .where(LeaveBalance.leave_allocation_id == allocation.id)
        )
        count = in_use.scalar_one()
        if count:
            raise ConflictError(
                f"Leave allocation '{allocation.name}' is referenced by {count} "
                "leave balance(s) and cannot be deleted.",
                errors={"allocation": ["Allocation has existing leave balances."]},
            )

        old_values = _allocation_snapshot(allocation)
        await db.delete(allocation)
        await flush_or_conflict(db, what="leave allocation")
        await create_audit_entry(
            db,
            action="delete",
            entity_type="leave_allocation",
            entity_id=allocation_id,
            actor_id=actor_id,
            old_values=old_values,
        )
        logger.info("Deleted leave allocation %s", allocation_id)
