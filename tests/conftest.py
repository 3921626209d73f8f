"""Shared test fixtures — async DB, client, directory and leave factories.

Reusable across all test modules (calendar, ledger, working days, requests).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Pin settings before any other import touches pydantic-settings
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEFAULT_SATURDAY_OFF_PATTERN", "SECOND_ONLY")

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from campus_leave.common.constants import SaturdayOffPattern
from campus_leave.database import Base, get_db
from campus_leave.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
import campus_leave.directory.models  # noqa: F401
import campus_leave.calendar.models  # noqa: F401
import campus_leave.leave.models  # noqa: F401
import campus_leave.common.audit  # noqa: F401

from campus_leave.calendar.models import WorkingDayPolicy
from campus_leave.directory.models import Organization, SchoolClass, User
from campus_leave.leave.models import LeaveAllocation, LeaveBalance, LeaveType


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() as a SQLite custom function."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Model factories ─────────────────────────────────────────────────

def _make_organization(*, name: str = "Greenwood High School") -> dict:
    return dict(
        id=f"org-{uuid.uuid4().hex[:8]}",
        name=name,
        created_at=datetime.now(timezone.utc),
    )


def _make_class(organization_id: str, *, name: str = "Grade 5 A") -> dict:
    return dict(
        id=f"class-{uuid.uuid4().hex[:8]}",
        organization_id=organization_id,
        name=name,
        created_at=datetime.now(timezone.utc),
    )


def _make_user(
    organization_id: str,
    *,
    class_id: Optional[str] = None,
    role_id: str = "teacher",
    full_name: str = "Asha Rao",
) -> dict:
    return dict(
        id=f"user-{uuid.uuid4().hex[:8]}",
        organization_id=organization_id,
        class_id=class_id,
        role_id=role_id,
        full_name=full_name,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
async def test_org(db) -> dict:
    """Insert a test organization and return its data dict."""
    data = _make_organization()
    db.add(Organization(**data))
    await db.flush()
    return data


@pytest.fixture
async def test_class(db, test_org) -> dict:
    """Insert a class belonging to test_org."""
    data = _make_class(test_org["id"])
    db.add(SchoolClass(**data))
    await db.flush()
    return data


@pytest.fixture
async def test_user(db, test_org, test_class) -> dict:
    """Insert an active teacher who belongs to test_class."""
    data = _make_user(test_org["id"], class_id=test_class["id"])
    db.add(User(**data))
    await db.flush()
    return data


# ── Seed helpers ────────────────────────────────────────────────────

async def _seed_policy(
    db: AsyncSession,
    organization_id: str,
    *,
    sunday_off: bool = True,
    saturday_off_pattern: SaturdayOffPattern = SaturdayOffPattern.SECOND_ONLY,
    effective_from: date = date(2024, 1, 1),
    effective_to: Optional[date] = None,
) -> WorkingDayPolicy:
    policy = WorkingDayPolicy(
        id=str(uuid.uuid4()),
        organization_id=organization_id,
        sunday_off=sunday_off,
        saturday_off_pattern=saturday_off_pattern,
        effective_from=effective_from,
        effective_to=effective_to,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(policy)
    await db.flush()
    return policy


async def _seed_balance(
    db: AsyncSession,
    user: dict,
    *,
    code: str = "CL",
    leave_type_name: str = "Casual Leave",
    total_days: Decimal = Decimal("12"),
    max_carry_forward_days: Optional[Decimal] = None,
    total_allocated: Optional[Decimal] = None,
    carried_forward: Decimal = Decimal("0"),
    used: Decimal = Decimal("0"),
    pending: Decimal = Decimal("0"),
) -> LeaveBalance:
    """Seed leave type → allocation (for the user's role) → balance."""
    if max_carry_forward_days is None:
        max_carry_forward_days = min(Decimal("5"), total_days)
    leave_type = LeaveType(id=str(uuid.uuid4()), code=code, name=leave_type_name)
    allocation = LeaveAllocation(
        id=str(uuid.uuid4()),
        organization_id=user["organization_id"],
        leave_type=leave_type,
        name=f"{leave_type_name} 2025",
        total_days=total_days,
        max_carry_forward_days=max_carry_forward_days,
        roles=[user["role_id"]],
        effective_from=date(2025, 1, 1),
        effective_to=date(2025, 12, 31),
    )
    balance = LeaveBalance(
        id=str(uuid.uuid4()),
        user_id=user["id"],
        allocation=allocation,
        total_allocated=total_days if total_allocated is None else total_allocated,
        carried_forward=carried_forward,
        used=used,
        pending=pending,
    )
    db.add_all([leave_type, allocation, balance])
    await db.flush()
    return balance
