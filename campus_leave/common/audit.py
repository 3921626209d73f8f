"""Audit trail model and async helper for recording engine writes."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from campus_leave.database import Base, new_id


class AuditTrail(Base):
    """Immutable log of every holiday, policy, balance and leave-request change."""

    __tablename__ = "audit_trail"
    __table_args__ = (
        sa.Index("ix_audit_trail_entity", "entity_type", "entity_id"),
        sa.Index("ix_audit_trail_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=new_id)
    actor_id: Mapped[Optional[str]] = mapped_column(sa.String(64))
    action: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    old_values: Mapped[Optional[dict]] = mapped_column(sa.JSON)
    new_values: Mapped[Optional[dict]] = mapped_column(sa.JSON)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    def __repr__(self) -> str:
        return (
            f"<AuditTrail {self.action} {self.entity_type}"
            f"/{self.entity_id} by {self.actor_id}>"
        )


async def create_audit_entry(
    session: AsyncSession,
    *,
    action: str,
    entity_type: str,
    entity_id: str,
    actor_id: Optional[str] = None,
    old_values: Optional[dict[str, Any]] = None,
    new_values: Optional[dict[str, Any]] = None,
) -> AuditTrail:
    """
    Add an audit-trail entry to the session.

    Args:
        session: Async SQLAlchemy session.
        action: create | update | delete | approve | reject | cancel.
        entity_type: e.g. "holiday", "leave_request", "leave_balance".
        entity_id: Id of the affected entity.
        actor_id: Id of the user performing the action.
        old_values: Previous state (for updates/deletes/transitions).
        new_values: New state (for creates/updates/transitions).
    """
    entry = AuditTrail(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
    )
    session.add(entry)
    return entry
