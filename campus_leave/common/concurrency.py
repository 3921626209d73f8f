"""Storage-conflict translation and the boundary retry helper.

Services flush through ``flush_or_conflict`` so that unique and exclusion
violations, stale optimistic-lock versions and serialization failures surface
as ``ConcurrencyConflictError`` instead of raw driver errors. Foreign-key and
CHECK failures cannot be fixed by a retry and propagate unchanged. Retrying is the
caller's job: routers wrap write operations in ``retry_on_conflict``.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from campus_leave.common.exceptions import ConcurrencyConflictError
from campus_leave.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected, exclusion_violation
_RETRYABLE_SQLSTATES = {"40001", "40P01", "23P01"}

# unique_violation, exclusion_violation
_CONFLICT_SQLSTATES = {"23505", "23P01"}


def _sqlstate(exc: DBAPIError) -> str | None:
    orig = getattr(exc, "orig", None)
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _is_write_race(exc: IntegrityError) -> bool:
    """Unique/exclusion violations lose a race; FK and CHECK failures never will."""
    state = _sqlstate(exc)
    if state is not None:
        return state in _CONFLICT_SQLSTATES
    # SQLite reports no SQLSTATE
    return "UNIQUE constraint failed" in str(exc.orig)


async def flush_or_conflict(db: AsyncSession, *, what: str) -> None:
    """Flush pending changes, translating storage conflicts."""
    try:
        await db.flush()
    except StaleDataError as exc:
        logger.warning("Stale version while writing %s: %s", what, exc)
        raise ConcurrencyConflictError(
            f"The {what} was modified concurrently. Please retry."
        ) from exc
    except IntegrityError as exc:
        if not _is_write_race(exc):
            raise
        logger.warning("Integrity conflict while writing %s: %s", what, exc.orig)
        raise ConcurrencyConflictError(
            f"The {what} conflicts with a concurrently saved record. Please retry."
        ) from exc
    except DBAPIError as exc:
        if _sqlstate(exc) in _RETRYABLE_SQLSTATES:
            logger.warning("Serialization failure while writing %s", what)
            raise ConcurrencyConflictError(
                f"The {what} could not be serialized with a concurrent update. "
                "Please retry."
            ) from exc
        raise


async def retry_on_conflict(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int | None = None,
) -> T:
    """Run ``operation``; on ConcurrencyConflictError roll back and re-run.

    The final failure propagates unchanged so the caller sees the 409.
    """
    remaining = settings.CONFLICT_RETRIES if retries is None else retries
    while True:
        try:
            return await operation()
        except ConcurrencyConflictError:
            if remaining <= 0:
                raise
            remaining -= 1
            logger.warning("Retrying after concurrency conflict (%d left)", remaining)
            await db.rollback()
