"""Calendar ORM models: WorkingDayPolicy, Holiday, CalendarException.

Weekend holidays (Sundays and policy Saturdays) are never stored; they are
generated on read from the effective WorkingDayPolicy.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from campus_leave.common.constants import HolidayType, OverrideType, SaturdayOffPattern
from campus_leave.database import Base, new_id
from campus_leave.directory.models import SchoolClass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═══════════════════════════════════════════════════════════════════════
# Working day policy
# ═══════════════════════════════════════════════════════════════════════


class WorkingDayPolicy(Base):
    __tablename__ = "working_day_policies"
    __table_args__ = (
        sa.CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="ck_working_day_policy_period",
        ),
        sa.Index(
            "ix_working_day_policy_org_from", "organization_id", "effective_from"
        ),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    organization_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sunday_off: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    saturday_off_pattern: Mapped[SaturdayOffPattern] = mapped_column(
        sa.Enum(SaturdayOffPattern, native_enum=False, length=32),
        nullable=False,
        default=SaturdayOffPattern.SECOND_ONLY,
    )
    effective_from: Mapped[date] = mapped_column(sa.Date, nullable=False)
    # NULL means open-ended
    effective_to: Mapped[Optional[date]] = mapped_column(sa.Date)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def covers(self, day: date) -> bool:
        if day < self.effective_from:
            return False
        return self.effective_to is None or day <= self.effective_to

    def __repr__(self) -> str:
        return (
            f"<WorkingDayPolicy {self.organization_id} "
            f"{self.effective_from}..{self.effective_to or 'open'} "
            f"sunday_off={self.sunday_off} sat={self.saturday_off_pattern.value}>"
        )


# ═══════════════════════════════════════════════════════════════════════
# Stored holidays
# ═══════════════════════════════════════════════════════════════════════


class Holiday(Base):
    """An explicitly stored holiday spanning ``start_date``..``end_date``."""

    __tablename__ = "holidays"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_holiday_period"),
        sa.Index("ix_holiday_org_start", "organization_id", "start_date"),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    organization_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    holiday_type: Mapped[HolidayType] = mapped_column(
        sa.Enum(HolidayType, native_enum=False, length=32), nullable=False
    )
    description: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<Holiday {self.description!r} {self.start_date}..{self.end_date} "
            f"{self.holiday_type.value}>"
        )


# ═══════════════════════════════════════════════════════════════════════
# Calendar exceptions
# ═══════════════════════════════════════════════════════════════════════


calendar_exception_classes = sa.Table(
    "calendar_exception_classes",
    Base.metadata,
    sa.Column(
        "calendar_exception_id",
        sa.String(36),
        sa.ForeignKey("calendar_exceptions.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    sa.Column(
        "class_id",
        sa.String(64),
        sa.ForeignKey("school_classes.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class CalendarException(Base):
    """Per-date override that forces a day to be working or a holiday."""

    __tablename__ = "calendar_exceptions"
    __table_args__ = (
        sa.Index("ix_calendar_exception_org_date", "organization_id", "date"),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    organization_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    override_type: Mapped[OverrideType] = mapped_column(
        sa.Enum(OverrideType, native_enum=False, length=32), nullable=False
    )
    is_applicable_to_all_classes: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=True
    )
    reason: Mapped[str] = mapped_column(sa.String(500), nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(sa.String(64))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    # Relationships
    classes: Mapped[list[SchoolClass]] = relationship(
        secondary=calendar_exception_classes, lazy="selectin"
    )

    @property
    def class_ids(self) -> list[str]:
        return sorted(c.id for c in self.classes)

    def applies_to(self, class_id: Optional[str]) -> bool:
        """Whether this exception affects a member of ``class_id``.

        A class-scoped exception never applies when no class is given.
        """
        if self.is_applicable_to_all_classes:
            return True
        if class_id is None:
            return False
        return any(c.id == class_id for c in self.classes)

    def __repr__(self) -> str:
        return f"<CalendarException {self.date} {self.override_type.value}>"
