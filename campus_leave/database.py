"""Async SQLAlchemy engine, session factory and declarative base.

Every public engine operation runs inside the request-scoped session yielded by
``get_db``: the session commits once after the handler returns, so a status
transition and its balance mutation land in the same transaction.
"""

import uuid

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from campus_leave.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.ENVIRONMENT == "development",
    isolation_level="READ COMMITTED",
    pool_size=10,
    max_overflow=20,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def new_id() -> str:
    """Opaque primary key used for every engine-owned record."""
    return str(uuid.uuid4())


async def get_db() -> AsyncSession:
    """FastAPI dependency: yield a session that commits on success."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
