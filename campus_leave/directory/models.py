"""Directory ORM models: Organization, SchoolClass, User.

Only the fields the calendar and leave engine read are modelled here; record
management for these entities lives outside this service. Identifiers are
opaque strings supplied by the owning system.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from campus_leave.database import Base, new_id


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(sa.String(150), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<Organization {self.name!r}>"


class SchoolClass(Base):
    """A class (grade/section) within an organization; calendar exceptions
    may be scoped to specific classes."""

    __tablename__ = "school_classes"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True, default=new_id)
    organization_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<SchoolClass {self.name!r}>"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True, default=new_id)
    organization_id: Mapped[str] = mapped_column(
        sa.String(64), sa.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    # Teachers and staff may not belong to a class
    class_id: Mapped[Optional[str]] = mapped_column(
        sa.String(64), sa.ForeignKey("school_classes.id", ondelete="SET NULL"),
    )
    role_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    full_name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return f"<User {self.full_name!r}>"
