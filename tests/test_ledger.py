"""Leave ledger tests — allocations, balance creation, admin edits, rollups."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.common.exceptions import (
    ConflictError,
    DuplicateBalanceError,
    NotFoundException,
    ValidationException,
)
from campus_leave.directory.models import User
from campus_leave.leave.allocations import AllocationService
from campus_leave.leave.ledger import (
    LedgerService,
    commit_days,
    compute_available,
    release_days,
    reserve_days,
    summarize_balances,
)
from campus_leave.leave.schemas import (
    LeaveAllocationCreate,
    LeaveAllocationUpdate,
    LeaveBalanceCreate,
    LeaveBalanceUpdate,
    LeaveTypeCreate,
)
from tests.conftest import _make_user, _seed_balance


# ═════════════════════════════════════════════════════════════════════
# Helpers
# ═════════════════════════════════════════════════════════════════════


async def _create_allocation(
    db: AsyncSession,
    org_id: str,
    *,
    code: str = "CL",
    total_days: Decimal = Decimal("12"),
    max_carry_forward_days: Decimal = Decimal("5"),
    roles: list[str] | None = None,
):
    leave_type = await AllocationService.create_leave_type(
        db, LeaveTypeCreate(code=code, name="Casual Leave"),
    )
    return await AllocationService.create_allocation(
        db,
        org_id,
        LeaveAllocationCreate(
            leave_type_id=leave_type.id,
            name="Casual Leave — Teachers",
            total_days=total_days,
            max_carry_forward_days=max_carry_forward_days,
            roles=["teacher"] if roles is None else roles,
            effective_from=date(2025, 1, 1),
            effective_to=date(2025, 12, 31),
        ),
    )


def _ledger(total="12", carried="0", used="0", pending="0") -> SimpleNamespace:
    return SimpleNamespace(
        id="b1",
        total_allocated=Decimal(total),
        carried_forward=Decimal(carried),
        used=Decimal(used),
        pending=Decimal(pending),
    )


# ═════════════════════════════════════════════════════════════════════
# 1. Pure ledger arithmetic
# ═════════════════════════════════════════════════════════════════════


class TestLedgerArithmetic:

    def test_available_formula(self):
        assert compute_available(_ledger("12", "3", "4", "2.5")) == Decimal("8.5")

    def test_reserve_commit_release(self):
        balance = _ledger()
        reserve_days(balance, Decimal("3"))
        assert balance.pending == Decimal("3")
        assert compute_available(balance) == Decimal("9")

        commit_days(balance, Decimal("2"))
        assert balance.pending == Decimal("1")
        assert balance.used == Decimal("2")

        release_days(balance, Decimal("1"))
        assert balance.pending == Decimal("0")
        assert compute_available(balance) == Decimal("10")

    def test_release_more_than_pending_refused(self):
        balance = _ledger(pending="1")
        with pytest.raises(ConflictError):
            release_days(balance, Decimal("2"))
        assert balance.pending == Decimal("1")

    def test_summary_of_no_balances_is_zero(self):
        totals = summarize_balances([])
        assert totals.available == Decimal("0")
        assert totals.total_allocated == Decimal("0")

    def test_summary_adds_up(self):
        totals = summarize_balances([_ledger("12", "2", "3", "1"), _ledger("6", used="1.5")])
        assert totals.total_allocated == Decimal("18")
        assert totals.used == Decimal("4.5")
        assert totals.available == Decimal("14.5")


# ═════════════════════════════════════════════════════════════════════
# 2. Leave types and allocations
# ═════════════════════════════════════════════════════════════════════


class TestAllocations:

    async def test_leave_type_code_unique(self, db: AsyncSession):
        await AllocationService.create_leave_type(db, LeaveTypeCreate(code="sl", name="Sick Leave"))
        with pytest.raises(ConflictError):
            await AllocationService.create_leave_type(
                db, LeaveTypeCreate(code="SL", name="Sick Leave again"),
            )
        types = await AllocationService.list_leave_types(db)
        assert [t.code for t in types] == ["SL"]

    async def test_carry_forward_cannot_exceed_total(self, db: AsyncSession, test_org):
        with pytest.raises(ValidationException) as exc_info:
            await _create_allocation(
                db, test_org["id"],
                total_days=Decimal("5"), max_carry_forward_days=Decimal("6"),
            )
        assert "max_carry_forward_days" in exc_info.value.errors

    async def test_roles_required(self, db: AsyncSession, test_org):
        with pytest.raises(ValidationException) as exc_info:
            await _create_allocation(db, test_org["id"], roles=[" "])
        assert "roles" in exc_info.value.errors

    async def test_half_day_granularity(self, db: AsyncSession, test_org):
        with pytest.raises(ValidationException) as exc_info:
            await _create_allocation(db, test_org["id"], total_days=Decimal("10.25"))
        assert "0.5" in str(exc_info.value.errors)

    async def test_list_filters_by_role_and_date(self, db: AsyncSession, test_org):
        allocation = await _create_allocation(db, test_org["id"], roles=["teacher", "staff"])
        assert allocation.leave_type.code == "CL"

        by_role = await AllocationService.list_allocations(db, test_org["id"], role_id="staff")
        assert [a.id for a in by_role] == [allocation.id]
        assert await AllocationService.list_allocations(db, test_org["id"], role_id="student") == []
        assert await AllocationService.list_allocations(
            db, test_org["id"], on=date(2026, 1, 1),
        ) == []

    async def test_update_allocation(self, db: AsyncSession, test_org):
        allocation = await _create_allocation(db, test_org["id"])
        updated = await AllocationService.update_allocation(
            db, test_org["id"], allocation.id,
            LeaveAllocationUpdate(total_days=Decimal("15"), roles=["teacher", "librarian"]),
        )
        assert updated.total_days == Decimal("15")
        assert updated.roles == ["librarian", "teacher"]

    async def test_delete_refused_while_balances_exist(self, db: AsyncSession, test_org, test_user):
        allocation = await _create_allocation(db, test_org["id"])
        await LedgerService.create_balance(
            db, LeaveBalanceCreate(user_id=test_user["id"], leave_allocation_id=allocation.id),
        )
        with pytest.raises(ConflictError):
            await AllocationService.delete_allocation(db, test_org["id"], allocation.id)

    async def test_delete_unused_allocation(self, db: AsyncSession, test_org):
        allocation = await _create_allocation(db, test_org["id"])
        await AllocationService.delete_allocation(db, test_org["id"], allocation.id)
        assert await AllocationService.list_allocations(db, test_org["id"]) == []


# ═════════════════════════════════════════════════════════════════════
# 3. Balance creation and admin edits
# ═════════════════════════════════════════════════════════════════════


class TestBalances:

    async def test_create_defaults_to_allocation_total(
        self, db: AsyncSession, test_org, test_user,
    ):
        allocation = await _create_allocation(db, test_org["id"])
        balance = await LedgerService.create_balance(
            db,
            LeaveBalanceCreate(
                user_id=test_user["id"],
                leave_allocation_id=allocation.id,
                carried_forward=Decimal("2"),
            ),
        )
        assert balance.total_allocated == Decimal("12")
        assert balance.used == Decimal("0")
        assert balance.pending == Decimal("0")
        assert balance.available == Decimal("14")
        assert balance.leave_type_name == "Casual Leave"

    async def test_duplicate_balance(self, db: AsyncSession, test_org, test_user):
        allocation = await _create_allocation(db, test_org["id"])
        data = LeaveBalanceCreate(user_id=test_user["id"], leave_allocation_id=allocation.id)
        await LedgerService.create_balance(db, data)
        with pytest.raises(DuplicateBalanceError):
            await LedgerService.create_balance(db, data)

    async def test_role_not_entitled(self, db: AsyncSession, test_org, test_user):
        allocation = await _create_allocation(db, test_org["id"], roles=["principal"])
        with pytest.raises(ValidationException) as exc_info:
            await LedgerService.create_balance(
                db,
                LeaveBalanceCreate(user_id=test_user["id"], leave_allocation_id=allocation.id),
            )
        assert "role" in str(exc_info.value.errors).lower()

    async def test_carry_forward_capped(self, db: AsyncSession, test_org, test_user):
        allocation = await _create_allocation(db, test_org["id"])
        with pytest.raises(ValidationException) as exc_info:
            await LedgerService.create_balance(
                db,
                LeaveBalanceCreate(
                    user_id=test_user["id"],
                    leave_allocation_id=allocation.id,
                    carried_forward=Decimal("6"),
                ),
            )
        assert "carried_forward" in exc_info.value.errors

    async def test_allocation_of_another_organization(self, db: AsyncSession, test_org, test_user):
        from campus_leave.directory.models import Organization

        db.add(Organization(id="org-other", name="Other School"))
        await db.flush()
        allocation = await _create_allocation(db, "org-other")
        with pytest.raises(NotFoundException):
            await LedgerService.create_balance(
                db,
                LeaveBalanceCreate(user_id=test_user["id"], leave_allocation_id=allocation.id),
            )

    async def test_admin_edit_keeps_used(self, db: AsyncSession, test_user):
        seeded = await _seed_balance(db, test_user, used=Decimal("4"), pending=Decimal("1"))
        updated = await LedgerService.update_balance(
            db, seeded.id,
            LeaveBalanceUpdate(total_allocated=Decimal("15"), carried_forward=Decimal("2")),
        )
        assert updated.total_allocated == Decimal("15")
        assert updated.used == Decimal("4")
        assert updated.available == Decimal("12")

    async def test_small_allocation_caps_carry_forward(self, db: AsyncSession, test_user):
        """A 2-day allocation stores a carry-forward cap within its total."""
        seeded = await _seed_balance(db, test_user, total_days=Decimal("2"))
        assert seeded.allocation.max_carry_forward_days == Decimal("2")
        assert compute_available(seeded) == Decimal("2")

    def test_used_is_not_editable(self):
        with pytest.raises(ValidationError):
            LeaveBalanceUpdate(used=Decimal("0"))

    async def test_update_bumps_version(self, db: AsyncSession, test_user):
        seeded = await _seed_balance(db, test_user)
        assert seeded.version == 1
        await LedgerService.update_balance(
            db, seeded.id, LeaveBalanceUpdate(total_allocated=Decimal("10")),
        )
        assert seeded.version == 2

    async def test_summary(self, db: AsyncSession, test_user):
        await _seed_balance(db, test_user, used=Decimal("2"))
        await _seed_balance(
            db, test_user, code="SL", leave_type_name="Sick Leave",
            total_days=Decimal("6"), pending=Decimal("1.5"),
        )
        summary = await LedgerService.get_summary(db, test_user["id"])
        assert summary.total_allocated == Decimal("18")
        assert summary.used == Decimal("2")
        assert summary.pending == Decimal("1.5")
        assert summary.available == Decimal("14.5")
        assert len(summary.balances) == 2

    async def test_summary_without_balances(self, db: AsyncSession, test_org):
        user = User(**_make_user(test_org["id"], role_id="staff"))
        db.add(user)
        await db.flush()
        summary = await LedgerService.get_summary(db, user.id)
        assert summary.available == Decimal("0")
        assert summary.balances == []
