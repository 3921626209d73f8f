"""Storage conflict translation and boundary retry tests — no database."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from campus_leave.common.concurrency import flush_or_conflict, retry_on_conflict
from campus_leave.common.exceptions import ConcurrencyConflictError


class _DriverError(Exception):
    def __init__(self, message: str, sqlstate: str | None = None):
        super().__init__(message)
        self.sqlstate = sqlstate


class _FailingSession:
    """Stands in for AsyncSession: flush raises, rollbacks are counted."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.rollbacks = 0

    async def flush(self):
        if self.error is not None:
            raise self.error

    async def rollback(self):
        self.rollbacks += 1


def _integrity(message: str, sqlstate: str | None = None) -> IntegrityError:
    return IntegrityError("INSERT INTO leave_requests ...", {}, _DriverError(message, sqlstate))


# ═════════════════════════════════════════════════════════════════════
# 1. flush_or_conflict
# ═════════════════════════════════════════════════════════════════════


class TestFlushOrConflict:

    async def test_clean_flush(self):
        await flush_or_conflict(_FailingSession(), what="leave request")

    @pytest.mark.parametrize("sqlstate", ["23505", "23P01"])
    async def test_unique_and_exclusion_are_retryable(self, sqlstate):
        session = _FailingSession(_integrity("duplicate key", sqlstate))
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await flush_or_conflict(session, what="leave request")
        assert exc_info.value.extra["retryable"] is True

    @pytest.mark.parametrize("sqlstate", ["23503", "23514", "23502"])
    async def test_foreign_key_and_check_failures_propagate(self, sqlstate):
        session = _FailingSession(_integrity("violates constraint", sqlstate))
        with pytest.raises(IntegrityError):
            await flush_or_conflict(session, what="leave balance")

    async def test_sqlite_unique_violation_is_retryable(self):
        session = _FailingSession(
            _integrity("UNIQUE constraint failed: leave_balances.user_id")
        )
        with pytest.raises(ConcurrencyConflictError):
            await flush_or_conflict(session, what="leave balance")

    async def test_sqlite_check_violation_propagates(self):
        session = _FailingSession(
            _integrity("CHECK constraint failed: ck_leave_allocation_carry_forward")
        )
        with pytest.raises(IntegrityError):
            await flush_or_conflict(session, what="leave allocation")


# ═════════════════════════════════════════════════════════════════════
# 2. retry_on_conflict
# ═════════════════════════════════════════════════════════════════════


class TestRetryOnConflict:

    async def test_retries_then_succeeds(self):
        session = _FailingSession()
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) == 1:
                raise ConcurrencyConflictError("busy")
            return "ok"

        assert await retry_on_conflict(session, operation, retries=1) == "ok"
        assert len(attempts) == 2
        assert session.rollbacks == 1

    async def test_gives_up_after_retries(self):
        session = _FailingSession()

        async def operation():
            raise ConcurrencyConflictError("busy")

        with pytest.raises(ConcurrencyConflictError):
            await retry_on_conflict(session, operation, retries=1)
        assert session.rollbacks == 1

    async def test_non_retryable_integrity_error_not_retried(self):
        session = _FailingSession(_integrity("violates foreign key", "23503"))

        async def operation():
            await flush_or_conflict(session, what="leave request")

        with pytest.raises(IntegrityError):
            await retry_on_conflict(session, operation, retries=3)
        assert session.rollbacks == 0
