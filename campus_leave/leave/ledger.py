"""Leave balance ledger.

``available = total_allocated + carried_forward - used - pending`` is always
derived, never stored. ``used`` and ``pending`` move only through the leave
request state machine (reserve / commit / release below); admin edits may
change ``total_allocated`` and ``carried_forward`` but never ``used``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.common.audit import create_audit_entry
from campus_leave.common.concurrency import flush_or_conflict
from campus_leave.common.constants import HALF_DAY, ZERO
from campus_leave.common.exceptions import (
    ConflictError,
    DuplicateBalanceError,
    NotFoundException,
    ValidationException,
)
from campus_leave.directory.service import DirectoryService
from campus_leave.leave.models import LeaveAllocation, LeaveBalance
from campus_leave.leave.schemas import (
    BalanceSummaryOut,
    LeaveBalanceCreate,
    LeaveBalanceOut,
    LeaveBalanceUpdate,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════
# Pure ledger arithmetic
# ═════════════════════════════════════════════════════════════════════


def compute_available(balance) -> Decimal:
    return (
        Decimal(balance.total_allocated)
        + Decimal(balance.carried_forward)
        - Decimal(balance.used)
        - Decimal(balance.pending)
    )


@dataclass(frozen=True)
class BalanceTotals:
    total_allocated: Decimal = ZERO
    carried_forward: Decimal = ZERO
    used: Decimal = ZERO
    pending: Decimal = ZERO
    available: Decimal = ZERO


def summarize_balances(balances: Iterable) -> BalanceTotals:
    """Sum a user's balances; no balances sums to zero."""
    total_allocated = carried_forward = used = pending = available = ZERO
    for b in balances:
        total_allocated += Decimal(b.total_allocated)
        carried_forward += Decimal(b.carried_forward)
        used += Decimal(b.used)
        pending += Decimal(b.pending)
        available += compute_available(b)
    return BalanceTotals(total_allocated, carried_forward, used, pending, available)


def check_day_quantity(value: Decimal, field: str) -> Decimal:
    """Non-negative and a whole multiple of half a day."""
    value = Decimal(value)
    if value < ZERO:
        raise ValidationException({field: ["Must not be negative."]})
    if value % HALF_DAY != ZERO:
        raise ValidationException({field: ["Must be a multiple of 0.5 days."]})
    return value


def reserve_days(balance: LeaveBalance, days: Decimal) -> None:
    """Hold ``days`` as pending for a newly submitted request."""
    balance.pending = Decimal(balance.pending) + days


def commit_days(balance: LeaveBalance, days: Decimal) -> None:
    """Move ``days`` from pending to used on approval."""
    _take_pending(balance, days)
    balance.used = Decimal(balance.used) + days


def release_days(balance: LeaveBalance, days: Decimal) -> None:
    """Return held ``days`` on rejection or cancellation."""
    _take_pending(balance, days)


def _take_pending(balance: LeaveBalance, days: Decimal) -> None:
    pending = Decimal(balance.pending)
    if days > pending:
        logger.error(
            "Balance %s holds %s pending days, cannot release %s",
            balance.id, pending, days,
        )
        raise ConflictError(
            "Leave balance is out of step with its pending requests.",
            errors={"balance": [
                f"Pending days ({pending}) are less than the request's days ({days})."
            ]},
        )
    balance.pending = pending - days


# ═════════════════════════════════════════════════════════════════════
# LedgerService
# ═════════════════════════════════════════════════════════════════════


def _balance_snapshot(balance: LeaveBalance) -> dict[str, str]:
    return {
        "total_allocated": str(balance.total_allocated),
        "carried_forward": str(balance.carried_forward),
        "used": str(balance.used),
        "pending": str(balance.pending),
    }


class LedgerService:
    """Async balance operations: create, admin edit, reads and rollups."""

    @staticmethod
    async def get_balance(
        db: AsyncSession, balance_id: str, *, for_update: bool = False
    ) -> LeaveBalance:
        query = select(LeaveBalance).where(LeaveBalance.id == balance_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        balance = result.scalars().first()
        if balance is None:
            raise NotFoundException("LeaveBalance", balance_id)
        return balance

    @staticmethod
    async def create_balance(
        db: AsyncSession,
        data: LeaveBalanceCreate,
        *,
        actor_id: Optional[str] = None,
    ) -> LeaveBalanceOut:
        """Instantiate an allocation for a user.

        ``total_allocated`` defaults to the allocation's ``total_days``.
        """
        user = await DirectoryService.get_user(db, data.user_id)
        allocation = await db.get(LeaveAllocation, data.leave_allocation_id)
        if allocation is None or allocation.organization_id != user.organization_id:
            raise NotFoundException("LeaveAllocation", data.leave_allocation_id)

        if user.role_id not in (allocation.roles or []):
            raise ValidationException(
                {"user_id": [
                    f"{allocation.name} does not apply to the user's role."
                ]}
            )

        existing = await db.execute(
            select(LeaveBalance.id).where(
                LeaveBalance.user_id == user.id,
                LeaveBalance.leave_allocation_id == allocation.id,
            )
        )
        if existing.scalar() is not None:
            raise DuplicateBalanceError(user.id, allocation.id)

        total_allocated = check_day_quantity(
            allocation.total_days if data.total_allocated is None else data.total_allocated,
            "total_allocated",
        )
        carried_forward = check_day_quantity(data.carried_forward, "carried_forward")
        if carried_forward > allocation.max_carry_forward_days:
            raise ValidationException(
                {"carried_forward": [
                    f"Cannot carry forward more than "
                    f"{allocation.max_carry_forward_days} days for {allocation.name}."
                ]}
            )

        balance = LeaveBalance(
            user_id=user.id,
            allocation=allocation,
            total_allocated=total_allocated,
            carried_forward=carried_forward,
            used=ZERO,
            pending=ZERO,
        )
        db.add(balance)
        await flush_or_conflict(db, what="leave balance")

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            new_values=_balance_snapshot(balance),
        )
        logger.info("Created leave balance %s for user %s", balance.id, user.id)
        return LeaveBalanceOut.model_validate(balance)

    @staticmethod
    async def update_balance(
        db: AsyncSession,
        balance_id: str,
        data: LeaveBalanceUpdate,
        *,
        actor_id: Optional[str] = None,
    ) -> LeaveBalanceOut:
        balance = await LedgerService.get_balance(db, balance_id, for_update=True)
        old_values = _balance_snapshot(balance)

        if data.total_allocated is not None:
            balance.total_allocated = check_day_quantity(
                data.total_allocated, "total_allocated"
            )
        if data.carried_forward is not None:
            carried_forward = check_day_quantity(data.carried_forward, "carried_forward")
            if carried_forward > balance.allocation.max_carry_forward_days:
                raise ValidationException(
                    {"carried_forward": [
                        f"Cannot carry forward more than "
                        f"{balance.allocation.max_carry_forward_days} days for "
                        f"{balance.allocation.name}."
                    ]}
                )
            balance.carried_forward = carried_forward

        available = compute_available(balance)
        if available < ZERO:
            logger.warning(
                "Leave balance %s is overcommitted after admin edit: available=%s",
                balance.id, available,
            )

        await flush_or_conflict(db, what="leave balance")
        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_balance",
            entity_id=balance.id,
            actor_id=actor_id,
            old_values=old_values,
            new_values=_balance_snapshot(balance),
        )
        return LeaveBalanceOut.model_validate(balance)

    @staticmethod
    async def _user_balances(db: AsyncSession, user_id: str) -> list[LeaveBalance]:
        result = await db.execute(
            select(LeaveBalance)
            .where(LeaveBalance.user_id == user_id)
            .order_by(LeaveBalance.created_at)
        )
        return list(result.scalars().all())

    @staticmethod
    async def get_balances(db: AsyncSession, user_id: str) -> list[LeaveBalanceOut]:
        await DirectoryService.get_user(db, user_id)
        balances = await LedgerService._user_balances(db, user_id)
        return [LeaveBalanceOut.model_validate(b) for b in balances]

    @staticmethod
    async def get_summary(db: AsyncSession, user_id: str) -> BalanceSummaryOut:
        """Dashboard rollup across all of a user's allocations."""
        await DirectoryService.get_user(db, user_id)
        balances = await LedgerService._user_balances(db, user_id)
        totals = summarize_balances(balances)
        return BalanceSummaryOut(
            user_id=user_id,
            total_allocated=totals.total_allocated,
            carried_forward=totals.carried_forward,
            used=totals.used,
            pending=totals.pending,
            available=totals.available,
            balances=[LeaveBalanceOut.model_validate(b) for b in balances],
        )
