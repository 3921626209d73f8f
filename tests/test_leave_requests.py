"""Leave request lifecycle tests — submission, edits, approve / reject / cancel.

Every test checks the balance alongside the request status: pending days are
held on submit, move to used on approval and are released on rejection or
cancellation.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.common.audit import AuditTrail
from campus_leave.common.constants import LeaveStatus
from campus_leave.common.exceptions import (
    ForbiddenException,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundException,
    OverlappingLeaveError,
    ValidationException,
)
from campus_leave.directory.models import User
from campus_leave.leave.ledger import compute_available
from campus_leave.leave.schemas import LeaveRequestCreate, LeaveRequestUpdate
from campus_leave.leave.service import ALLOWED_TRANSITIONS, LeaveRequestService
from tests.conftest import _make_user, _seed_balance

NOW = datetime(2025, 1, 3, 10, 30, tzinfo=timezone.utc)
REVIEWER = "principal-1"


# ═════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════


async def _apply(
    db: AsyncSession,
    user: dict,
    balance,
    start: date = date(2025, 1, 6),
    end: date = date(2025, 1, 8),
    *,
    is_half_day: bool = False,
):
    return await LeaveRequestService.create_request(
        db,
        user["id"],
        LeaveRequestCreate(
            leave_balance_id=balance.id,
            start_date=start,
            end_date=end,
            is_half_day=is_half_day,
            reason="Family function",
        ),
    )


# ═════════════════════════════════════════════════════════════════════
# 1. Submission
# ═════════════════════════════════════════════════════════════════════


class TestCreateRequest:

    async def test_submit_holds_pending_days(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)

        assert req.status == LeaveStatus.pending
        assert req.number_of_days == Decimal("3")
        assert req.leave_type_name == "Casual Leave"
        assert balance.pending == Decimal("3")
        assert balance.used == Decimal("0")
        assert compute_available(balance) == Decimal("9")

    async def test_half_day_request(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(
            db, test_user, balance, date(2025, 2, 3), date(2025, 2, 3), is_half_day=True,
        )
        assert req.number_of_days == Decimal("0.5")
        assert balance.pending == Decimal("0.5")

    async def test_insufficient_balance(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user, total_days=Decimal("2"))
        with pytest.raises(InsufficientBalanceError) as exc_info:
            await _apply(db, test_user, balance)
        assert "available: 2" in str(exc_info.value.errors).lower()
        assert balance.pending == Decimal("0")

    async def test_exactly_exhausts_balance(self, db: AsyncSession, test_user):
        balance = await _seed_balance(
            db, test_user, total_days=Decimal("2"), carried_forward=Decimal("1"),
        )
        req = await _apply(db, test_user, balance)
        assert req.number_of_days == Decimal("3")
        assert compute_available(balance) == Decimal("0")

    async def test_overlap_with_own_pending_request(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        first = await _apply(db, test_user, balance, date(2025, 1, 10), date(2025, 1, 12))
        with pytest.raises(OverlappingLeaveError) as exc_info:
            await _apply(db, test_user, balance, date(2025, 1, 11), date(2025, 1, 15))
        assert exc_info.value.conflicts[0]["id"] == first.id
        assert balance.pending == first.number_of_days

    async def test_other_users_balance_forbidden(self, db: AsyncSession, test_org, test_user):
        other = _make_user(test_org["id"], full_name="Ravi Kumar")
        db.add(User(**other))
        await db.flush()
        balance = await _seed_balance(db, other)
        with pytest.raises(ForbiddenException):
            await _apply(db, test_user, balance)

    async def test_unknown_balance(self, db: AsyncSession, test_user):
        with pytest.raises(NotFoundException):
            await LeaveRequestService.create_request(
                db,
                test_user["id"],
                LeaveRequestCreate(
                    leave_balance_id="missing",
                    start_date=date(2025, 1, 6),
                    end_date=date(2025, 1, 6),
                ),
            )

    async def test_submission_is_audited(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        await db.flush()
        result = await db.execute(
            select(AuditTrail).where(AuditTrail.entity_id == req.id)
        )
        entry = result.scalars().one()
        assert entry.action == "create"
        assert entry.actor_id == test_user["id"]
        assert entry.new_values["number_of_days"] == "3"


# ═════════════════════════════════════════════════════════════════════
# 2. Transitions
# ═════════════════════════════════════════════════════════════════════


class TestTransitions:

    async def test_approve_moves_pending_to_used(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)

        approved = await LeaveRequestService.approve_request(
            db, req.id, REVIEWER, now=NOW, comment="Enjoy",
        )
        assert approved.status == LeaveStatus.approved
        assert approved.reviewed_by == REVIEWER
        assert approved.reviewer_comments == "Enjoy"
        assert balance.pending == Decimal("0")
        assert balance.used == Decimal("3")
        assert compute_available(balance) == Decimal("9")

    async def test_reject_releases_pending(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)

        rejected = await LeaveRequestService.reject_request(
            db, req.id, REVIEWER, now=NOW, reason="  Exams week ",
        )
        assert rejected.status == LeaveStatus.rejected
        assert rejected.reviewer_comments == "Exams week"
        assert balance.pending == Decimal("0")
        assert compute_available(balance) == Decimal("12")

    async def test_reject_requires_reason(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        with pytest.raises(ValidationException) as exc_info:
            await LeaveRequestService.reject_request(db, req.id, REVIEWER, now=NOW, reason="   ")
        assert "reason" in exc_info.value.errors
        assert balance.pending == Decimal("3")

    async def test_cancel_by_requester(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)

        cancelled = await LeaveRequestService.cancel_request(
            db, req.id, test_user["id"], now=NOW,
        )
        assert cancelled.status == LeaveStatus.cancelled
        assert cancelled.cancelled_at is not None
        assert compute_available(balance) == Decimal("12")

    async def test_cancel_by_someone_else_forbidden(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        with pytest.raises(ForbiddenException):
            await LeaveRequestService.cancel_request(db, req.id, "user-other", now=NOW)
        assert balance.pending == Decimal("3")

    @pytest.mark.parametrize("first", ["approve", "reject", "cancel"])
    async def test_terminal_states_are_final(self, db: AsyncSession, test_user, first):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        actions = {
            "approve": lambda: LeaveRequestService.approve_request(
                db, req.id, REVIEWER, now=NOW,
            ),
            "reject": lambda: LeaveRequestService.reject_request(
                db, req.id, REVIEWER, now=NOW, reason="No cover available",
            ),
            "cancel": lambda: LeaveRequestService.cancel_request(
                db, req.id, test_user["id"], now=NOW,
            ),
        }
        await actions[first]()
        snapshot = (balance.used, balance.pending)

        for action in actions.values():
            with pytest.raises(InvalidTransitionError):
                await action()
        assert (balance.used, balance.pending) == snapshot

    async def test_cancelled_dates_can_be_reapplied(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        await LeaveRequestService.cancel_request(db, req.id, test_user["id"], now=NOW)
        again = await _apply(db, test_user, balance)
        assert again.status == LeaveStatus.pending

    async def test_ledger_has_no_drift(self, db: AsyncSession, test_user):
        """approve, reject and cancel on separate ranges leave exact figures."""
        balance = await _seed_balance(db, test_user, carried_forward=Decimal("2"))
        approved = await _apply(db, test_user, balance, date(2025, 1, 6), date(2025, 1, 8))
        rejected = await _apply(db, test_user, balance, date(2025, 1, 13), date(2025, 1, 14))
        cancelled = await _apply(
            db, test_user, balance, date(2025, 1, 15), date(2025, 1, 15), is_half_day=True,
        )
        still_pending = await _apply(db, test_user, balance, date(2025, 1, 20), date(2025, 1, 21))

        await LeaveRequestService.approve_request(db, approved.id, REVIEWER, now=NOW)
        await LeaveRequestService.reject_request(
            db, rejected.id, REVIEWER, now=NOW, reason="Inspection visit",
        )
        await LeaveRequestService.cancel_request(db, cancelled.id, test_user["id"], now=NOW)

        assert balance.used == Decimal("3")
        assert balance.pending == still_pending.number_of_days == Decimal("2")
        assert compute_available(balance) == Decimal("9")

    def test_transition_table(self):
        assert ALLOWED_TRANSITIONS[LeaveStatus.pending] == {
            LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled,
        }
        for terminal in (LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled):
            assert not ALLOWED_TRANSITIONS[terminal]

    async def test_transition_audit_records_old_status(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        await LeaveRequestService.approve_request(db, req.id, REVIEWER, now=NOW)
        await db.flush()
        result = await db.execute(
            select(AuditTrail).where(
                AuditTrail.entity_id == req.id, AuditTrail.action == "approve",
            )
        )
        entry = result.scalars().one()
        assert entry.old_values == {"status": "pending"}
        assert entry.new_values["status"] == "approved"
        assert entry.actor_id == REVIEWER


# ═════════════════════════════════════════════════════════════════════
# 3. Edits and reads
# ═════════════════════════════════════════════════════════════════════


class TestEditRequest:

    async def test_extend_pending_request(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        updated = await LeaveRequestService.update_request(
            db, req.id, test_user["id"], LeaveRequestUpdate(end_date=date(2025, 1, 10)),
        )
        assert updated.number_of_days == Decimal("5")
        assert balance.pending == Decimal("5")

    async def test_shrink_to_half_day(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        updated = await LeaveRequestService.update_request(
            db, req.id, test_user["id"],
            LeaveRequestUpdate(end_date=date(2025, 1, 6), is_half_day=True),
        )
        assert updated.number_of_days == Decimal("0.5")
        assert balance.pending == Decimal("0.5")

    async def test_edit_beyond_balance(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user, total_days=Decimal("4"))
        req = await _apply(db, test_user, balance)
        with pytest.raises(InsufficientBalanceError):
            await LeaveRequestService.update_request(
                db, req.id, test_user["id"], LeaveRequestUpdate(end_date=date(2025, 1, 10)),
            )
        assert balance.pending == Decimal("3")

    async def test_edit_after_approval_refused(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        await LeaveRequestService.approve_request(db, req.id, REVIEWER, now=NOW)
        with pytest.raises(ValidationException) as exc_info:
            await LeaveRequestService.update_request(
                db, req.id, test_user["id"], LeaveRequestUpdate(reason="Changed plans"),
            )
        assert "only pending" in str(exc_info.value.errors).lower()

    async def test_edit_by_someone_else_forbidden(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        req = await _apply(db, test_user, balance)
        with pytest.raises(ForbiddenException):
            await LeaveRequestService.update_request(
                db, req.id, "user-other", LeaveRequestUpdate(reason="Hijack"),
            )

    async def test_list_requests_filters(self, db: AsyncSession, test_user):
        balance = await _seed_balance(db, test_user)
        first = await _apply(db, test_user, balance, date(2025, 1, 6), date(2025, 1, 6))
        second = await _apply(db, test_user, balance, date(2025, 2, 3), date(2025, 2, 4))
        await LeaveRequestService.approve_request(db, first.id, REVIEWER, now=NOW)

        everything = await LeaveRequestService.list_requests(db, test_user["id"])
        assert [r.id for r in everything] == [second.id, first.id]

        pending = await LeaveRequestService.list_requests(
            db, test_user["id"], status=LeaveStatus.pending,
        )
        assert [r.id for r in pending] == [second.id]

        january = await LeaveRequestService.list_requests(
            db, test_user["id"], from_date=date(2025, 1, 1), to_date=date(2025, 1, 31),
        )
        assert [r.id for r in january] == [first.id]

    async def test_get_unknown_request(self, db: AsyncSession):
        with pytest.raises(NotFoundException):
            await LeaveRequestService.get_request(db, "missing")


# ═════════════════════════════════════════════════════════════════════
# 4. Reviewer queue
# ═════════════════════════════════════════════════════════════════════


class TestReviewQueue:

    async def test_pending_queue_for_organization(
        self, db: AsyncSession, test_org, test_user,
    ):
        colleague = _make_user(test_org["id"], full_name="Ravi Kumar")
        db.add(User(**colleague))
        await db.flush()
        mine = await _seed_balance(db, test_user)
        theirs = await _seed_balance(db, colleague, code="EL", leave_type_name="Earned Leave")

        later = await _apply(db, test_user, mine, date(2025, 2, 3), date(2025, 2, 4))
        earlier = await _apply(db, colleague, theirs, date(2025, 1, 6), date(2025, 1, 7))
        decided = await _apply(db, test_user, mine, date(2025, 1, 20), date(2025, 1, 20))
        await LeaveRequestService.approve_request(db, decided.id, REVIEWER, now=NOW)

        queue = await LeaveRequestService.list_requests_for_review(db, test_org["id"])
        assert [r.id for r in queue] == [earlier.id, later.id]

        approved = await LeaveRequestService.list_requests_for_review(
            db, test_org["id"], status=LeaveStatus.approved,
        )
        assert [r.id for r in approved] == [decided.id]

        by_staff = await LeaveRequestService.list_requests_for_review(
            db, test_org["id"], user_id=colleague["id"],
        )
        assert [r.id for r in by_staff] == [earlier.id]

    async def test_queue_filtered_by_class(
        self, db: AsyncSession, test_org, test_user, test_class,
    ):
        classless = _make_user(test_org["id"], full_name="Meera Iyer")
        db.add(User(**classless))
        await db.flush()
        in_class = await _apply(db, test_user, await _seed_balance(db, test_user))
        await _apply(db, classless, await _seed_balance(db, classless, code="SL"))

        queue = await LeaveRequestService.list_requests_for_review(
            db, test_org["id"], class_id=test_class["id"],
        )
        assert [r.id for r in queue] == [in_class.id]

    async def test_other_organization_sees_nothing(self, db: AsyncSession, test_user):
        await _apply(db, test_user, await _seed_balance(db, test_user))
        assert await LeaveRequestService.list_requests_for_review(db, "org-other") == []
