"""Read-only lookups of directory records used by the engine."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_leave.common.exceptions import NotFoundException, ValidationException
from campus_leave.directory.models import Organization, SchoolClass, User


class DirectoryService:

    @staticmethod
    async def get_user(db: AsyncSession, user_id: str) -> User:
        result = await db.execute(
            select(User).where(User.id == user_id, User.is_active.is_(True))
        )
        user = result.scalars().first()
        if user is None:
            raise NotFoundException("User", user_id)
        return user

    @staticmethod
    async def get_organization(db: AsyncSession, organization_id: str) -> Organization:
        org = await db.get(Organization, organization_id)
        if org is None:
            raise NotFoundException("Organization", organization_id)
        return org

    @staticmethod
    async def get_classes(
        db: AsyncSession,
        organization_id: str,
        class_ids: Sequence[str],
    ) -> list[SchoolClass]:
        """Load classes by id; every id must exist in the organization."""
        if not class_ids:
            return []
        wanted = set(class_ids)
        result = await db.execute(
            select(SchoolClass).where(
                SchoolClass.id.in_(wanted),
                SchoolClass.organization_id == organization_id,
            )
        )
        classes = list(result.scalars().all())
        missing = wanted - {c.id for c in classes}
        if missing:
            raise ValidationException(
                {"classes": [
                    f"Unknown class '{cid}' for this organization."
                    for cid in sorted(missing)
                ]}
            )
        return classes
