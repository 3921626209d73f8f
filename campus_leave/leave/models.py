"""Leave ORM models: LeaveType, LeaveAllocation, LeaveBalance, LeaveRequest."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_leave.common.constants import LeaveStatus
from campus_leave.database import Base, new_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveType(Base):
    __tablename__ = "leave_types"

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    code: Mapped[str] = mapped_column(sa.String(10), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<LeaveType {self.code}>"


class LeaveAllocation(Base):
    """Organizational entitlement policy for a leave type and set of roles."""

    __tablename__ = "leave_allocations"
    __table_args__ = (
        sa.CheckConstraint(
            "max_carry_forward_days <= total_days",
            name="ck_leave_allocation_carry_forward",
        ),
        sa.CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="ck_leave_allocation_period",
        ),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    organization_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    leave_type_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("leave_types.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.Text)
    total_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    max_carry_forward_days: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    # List of role ids entitled to this allocation
    roles: Mapped[list] = mapped_column(sa.JSON, nullable=False, default=list)
    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    leave_type: Mapped[LeaveType] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<LeaveAllocation {self.name!r} {self.total_days}d>"


class LeaveBalance(Base):
    """Per-user instance of an allocation. ``available`` is always derived."""

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "leave_allocation_id", name="uq_leave_balance_user_allocation"
        ),
        sa.CheckConstraint(
            "total_allocated >= 0 AND used >= 0 AND pending >= 0 "
            "AND carried_forward >= 0",
            name="ck_leave_balance_non_negative",
        ),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    leave_allocation_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("leave_allocations.id"), nullable=False
    )
    total_allocated: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    used: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    pending: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    carried_forward: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    # Optimistic lock; bumped by the ORM on every UPDATE
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    allocation: Mapped[LeaveAllocation] = relationship(lazy="selectin")

    @property
    def available(self) -> Decimal:
        return self.total_allocated + self.carried_forward - self.used - self.pending

    @property
    def allocation_name(self) -> str:
        return self.allocation.name

    @property
    def leave_type_name(self) -> str:
        return self.allocation.leave_type.name

    def __repr__(self) -> str:
        return (
            f"<LeaveBalance user={self.user_id} alloc={self.leave_allocation_id} "
            f"avail={self.available}>"
        )


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_request_period"),
        sa.Index("ix_leave_request_user_dates", "user_id", "start_date", "end_date"),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    leave_balance_id: Mapped[str] = mapped_column(
        sa.String(36), sa.ForeignKey("leave_balances.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    number_of_days: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    is_half_day: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, native_enum=False, length=16),
        nullable=False,
        default=LeaveStatus.pending,
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    reviewed_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    reviewer_comments: Mapped[Optional[str]] = mapped_column(sa.Text)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    balance: Mapped[LeaveBalance] = relationship(lazy="selectin")

    @property
    def leave_type_name(self) -> str:
        return self.balance.leave_type_name

    def __repr__(self) -> str:
        return (
            f"<LeaveRequest {self.user_id} {self.start_date}..{self.end_date} "
            f"{self.status.value}>"
        )
