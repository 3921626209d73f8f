"""Boundary dependencies shared by the routers."""

from datetime import date, datetime, timezone
from typing import Optional

from fastapi import Header, Query


async def get_actor_id(
    x_user_id: str = Header(..., alias="X-User-Id", min_length=1, max_length=64),
) -> str:
    """Opaque id of the acting user, supplied by the fronting gateway."""
    return x_user_id


async def get_today(
    today: Optional[date] = Query(None, description="Reference date; defaults to the server date"),
) -> date:
    # Wall-clock reads stay at the boundary; services receive dates explicitly
    return today or date.today()


async def get_now() -> datetime:
    """Timestamp for the current request, passed explicitly to the services."""
    return datetime.now(timezone.utc)
