"""Leave request service layer — submission, edits and the status state machine.

Lifecycle:
  - create           → pending    (holds days as pending on the balance)
  - approve          pending → approved   (pending moves to used)
  - reject / cancel  pending → rejected / cancelled   (pending released)

approved, rejected and cancelled are terminal. Each transition locks the
request and its balance rows, and the status change, balance mutation and
audit entry are flushed in the caller's transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.common.audit import create_audit_entry
from campus_leave.common.concurrency import flush_or_conflict
from campus_leave.common.constants import ZERO, LeaveStatus
from campus_leave.common.exceptions import (
    ForbiddenException,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundException,
    ValidationException,
)
from campus_leave.directory.models import User
from campus_leave.leave.ledger import (
    LedgerService,
    commit_days,
    compute_available,
    release_days,
    reserve_days,
)
from campus_leave.leave.models import LeaveBalance, LeaveRequest
from campus_leave.leave.schemas import (
    LeaveRequestCreate,
    LeaveRequestOut,
    LeaveRequestUpdate,
    WorkingDaysOut,
)
from campus_leave.leave.workdays import calculate_working_days

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[LeaveStatus, frozenset[LeaveStatus]] = {
    LeaveStatus.pending: frozenset(
        {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
    ),
    LeaveStatus.approved: frozenset(),
    LeaveStatus.rejected: frozenset(),
    LeaveStatus.cancelled: frozenset(),
}


def ensure_transition(current: LeaveStatus, target: LeaveStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current.value, target.value)


# ═════════════════════════════════════════════════════════════════════
# LeaveRequestService
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestService:
    """Async leave request operations."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _get_request(
        db: AsyncSession, request_id: str, *, for_update: bool = False
    ) -> LeaveRequest:
        query = select(LeaveRequest).where(LeaveRequest.id == request_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        leave_req = result.scalars().first()
        if leave_req is None:
            raise NotFoundException("LeaveRequest", request_id)
        return leave_req

    @staticmethod
    async def _lock_balance(db: AsyncSession, leave_req: LeaveRequest) -> LeaveBalance:
        return await LedgerService.get_balance(
            db, leave_req.leave_balance_id, for_update=True
        )

    # ─────────────────────────────────────────────────────────────────
    # Working days preview
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def preview_working_days(
        db: AsyncSession,
        user_id: str,
        start_date: date,
        end_date: date,
        *,
        is_half_day: bool = False,
        exclude_request_id: Optional[str] = None,
    ) -> WorkingDaysOut:
        result = await calculate_working_days(
            db,
            user_id,
            start_date,
            end_date,
            is_half_day=is_half_day,
            exclude_request_id=exclude_request_id,
        )
        return WorkingDaysOut.model_validate(result)

    # ─────────────────────────────────────────────────────────────────
    # Create
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create_request(
        db: AsyncSession,
        user_id: str,
        data: LeaveRequestCreate,
    ) -> LeaveRequestOut:
        """Submit a request: working days, overlap and balance checks, then hold days."""
        balance = await LedgerService.get_balance(db, data.leave_balance_id, for_update=True)
        if balance.user_id != user_id:
            raise ForbiddenException("You can only apply against your own leave balances.")

        result = await calculate_working_days(
            db, user_id, data.start_date, data.end_date, is_half_day=data.is_half_day,
        )
        days = result.working_days

        available = compute_available(balance)
        if available < days:
            logger.info(
                "Insufficient balance %s for user %s: available=%s requested=%s",
                balance.id, user_id, available, days,
            )
            raise InsufficientBalanceError(balance.leave_type_name, available, days)

        leave_req = LeaveRequest(
            user_id=user_id,
            balance=balance,
            start_date=data.start_date,
            end_date=data.end_date,
            number_of_days=days,
            is_half_day=data.is_half_day,
            status=LeaveStatus.pending,
            reason=data.reason,
        )
        reserve_days(balance, days)
        db.add(leave_req)
        await flush_or_conflict(db, what="leave request")

        await create_audit_entry(
            db,
            action="create",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=user_id,
            new_values={
                "leave_balance_id": balance.id,
                "start_date": data.start_date.isoformat(),
                "end_date": data.end_date.isoformat(),
                "number_of_days": str(days),
                "is_half_day": data.is_half_day,
                "status": LeaveStatus.pending.value,
            },
        )
        logger.info(
            "Leave request %s submitted by %s: %s..%s (%s days)",
            leave_req.id, user_id, data.start_date, data.end_date, days,
        )
        return LeaveRequestOut.model_validate(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Edit (pending only)
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update_request(
        db: AsyncSession,
        request_id: str,
        user_id: str,
        data: LeaveRequestUpdate,
    ) -> LeaveRequestOut:
        """Change dates / half-day / reason of the requester's own pending request.

        The range is re-validated without counting the request against
        itself, and the balance's pending days move by the difference.
        """
        leave_req = await LeaveRequestService._get_request(db, request_id, for_update=True)
        if leave_req.user_id != user_id:
            raise ForbiddenException("You can only edit your own leave requests.")
        if leave_req.status != LeaveStatus.pending:
            raise ValidationException(
                {"status": [
                    f"Leave request is already {leave_req.status.value}; "
                    "only pending requests can be edited."
                ]}
            )
        balance = await LeaveRequestService._lock_balance(db, leave_req)

        changes = data.model_dump(exclude_unset=True)
        start_date = changes.get("start_date") or leave_req.start_date
        end_date = changes.get("end_date") or leave_req.end_date
        is_half_day = leave_req.is_half_day
        if changes.get("is_half_day") is not None:
            is_half_day = changes["is_half_day"]

        result = await calculate_working_days(
            db,
            user_id,
            start_date,
            end_date,
            is_half_day=is_half_day,
            exclude_request_id=leave_req.id,
        )
        old_days = Decimal(leave_req.number_of_days)
        new_days = result.working_days
        delta = new_days - old_days

        if delta > ZERO:
            available = compute_available(balance)
            if available < delta:
                raise InsufficientBalanceError(
                    balance.leave_type_name, available + old_days, new_days,
                )
            reserve_days(balance, delta)
        elif delta < ZERO:
            release_days(balance, -delta)

        old_values = {
            "start_date": leave_req.start_date.isoformat(),
            "end_date": leave_req.end_date.isoformat(),
            "number_of_days": str(old_days),
            "is_half_day": leave_req.is_half_day,
        }
        leave_req.start_date = start_date
        leave_req.end_date = end_date
        leave_req.is_half_day = is_half_day
        leave_req.number_of_days = new_days
        if "reason" in changes:
            leave_req.reason = changes["reason"]
        await flush_or_conflict(db, what="leave request")

        await create_audit_entry(
            db,
            action="update",
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=user_id,
            old_values=old_values,
            new_values={
                "start_date": start_date.isoformat(),
                "end_date": end_date.isoformat(),
                "number_of_days": str(new_days),
                "is_half_day": is_half_day,
            },
        )
        return LeaveRequestOut.model_validate(leave_req)

    # ─────────────────────────────────────────────────────────────────
    # Transitions
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _transition(
        db: AsyncSession,
        request_id: str,
        target: LeaveStatus,
        actor_id: str,
        *,
        now: datetime,
        apply: Callable[[LeaveRequest, LeaveBalance], None],
        authorize: Optional[Callable[[LeaveRequest], None]] = None,
        action: str,
        note: Optional[str] = None,
    ) -> LeaveRequestOut:
        leave_req = await LeaveRequestService._get_request(db, request_id, for_update=True)
        if authorize is not None:
            authorize(leave_req)
        ensure_transition(leave_req.status, target)
        balance = await LeaveRequestService._lock_balance(db, leave_req)

        old_status = leave_req.status
        apply(leave_req, balance)
        leave_req.status = target
        await flush_or_conflict(db, what="leave request")

        await create_audit_entry(
            db,
            action=action,
            entity_type="leave_request",
            entity_id=leave_req.id,
            actor_id=actor_id,
            old_values={"status": old_status.value},
            new_values={
                "status": target.value,
                "number_of_days": str(leave_req.number_of_days),
                "note": note,
            },
        )
        logger.info(
            "Leave request %s %s -> %s by %s at %s",
            leave_req.id, old_status.value, target.value, actor_id, now.isoformat(),
        )
        return LeaveRequestOut.model_validate(leave_req)

    @staticmethod
    async def approve_request(
        db: AsyncSession,
        request_id: str,
        reviewer_id: str,
        *,
        now: datetime,
        comment: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Approve a pending request; its pending days become used."""

        def apply(leave_req: LeaveRequest, balance: LeaveBalance) -> None:
            commit_days(balance, Decimal(leave_req.number_of_days))
            leave_req.reviewed_by = reviewer_id
            leave_req.reviewed_at = now
            leave_req.reviewer_comments = comment

        return await LeaveRequestService._transition(
            db, request_id, LeaveStatus.approved, reviewer_id,
            now=now, apply=apply, action="approve", note=comment,
        )

    @staticmethod
    async def reject_request(
        db: AsyncSession,
        request_id: str,
        reviewer_id: str,
        *,
        now: datetime,
        reason: str,
    ) -> LeaveRequestOut:
        """Reject a pending request; a non-blank reason is required."""
        if not reason or not reason.strip():
            raise ValidationException({"reason": ["A rejection reason is required."]})

        def apply(leave_req: LeaveRequest, balance: LeaveBalance) -> None:
            release_days(balance, Decimal(leave_req.number_of_days))
            leave_req.reviewed_by = reviewer_id
            leave_req.reviewed_at = now
            leave_req.reviewer_comments = reason.strip()

        return await LeaveRequestService._transition(
            db, request_id, LeaveStatus.rejected, reviewer_id,
            now=now, apply=apply, action="reject", note=reason.strip(),
        )

    @staticmethod
    async def cancel_request(
        db: AsyncSession,
        request_id: str,
        user_id: str,
        *,
        now: datetime,
        reason: Optional[str] = None,
    ) -> LeaveRequestOut:
        """Self-service cancel; only the requester, only while pending."""

        def authorize(leave_req: LeaveRequest) -> None:
            if leave_req.user_id != user_id:
                raise ForbiddenException("You can only cancel your own leave requests.")

        def apply(leave_req: LeaveRequest, balance: LeaveBalance) -> None:
            release_days(balance, Decimal(leave_req.number_of_days))
            leave_req.cancelled_at = now

        return await LeaveRequestService._transition(
            db, request_id, LeaveStatus.cancelled, user_id,
            now=now, apply=apply, authorize=authorize, action="cancel", note=reason,
        )

    # ─────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(db: AsyncSession, request_id: str) -> LeaveRequestOut:
        leave_req = await LeaveRequestService._get_request(db, request_id)
        return LeaveRequestOut.model_validate(leave_req)

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        user_id: str,
        *,
        status: Optional[LeaveStatus] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> list[LeaveRequestOut]:
        query = select(LeaveRequest).where(LeaveRequest.user_id == user_id)
        if status is not None:
            query = query.where(LeaveRequest.status == status)
        if from_date is not None:
            query = query.where(LeaveRequest.end_date >= from_date)
        if to_date is not None:
            query = query.where(LeaveRequest.start_date <= to_date)
        result = await db.execute(query.order_by(LeaveRequest.start_date.desc()))
        return [LeaveRequestOut.model_validate(r) for r in result.scalars().all()]

    @staticmethod
    async def list_requests_for_review(
        db: AsyncSession,
        organization_id: str,
        *,
        status: LeaveStatus = LeaveStatus.pending,
        class_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> list[LeaveRequestOut]:
        """Requests of an organization's users awaiting (or past) review.

        Defaults to the pending queue, earliest leave first; ``class_id``
        and ``user_id`` narrow it to one class or one staff member.
        """
        query = (
            select(LeaveRequest)
            .join(User, User.id == LeaveRequest.user_id)
            .where(
                User.organization_id == organization_id,
                LeaveRequest.status == status,
            )
        )
        if class_id is not None:
            query = query.where(User.class_id == class_id)
        if user_id is not None:
            query = query.where(LeaveRequest.user_id == user_id)
        result = await db.execute(
            query.order_by(LeaveRequest.start_date.asc(), LeaveRequest.created_at.asc())
        )
        return [LeaveRequestOut.model_validate(r) for r in result.scalars().all()]
