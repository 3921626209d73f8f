"""Alembic environment: runs the raw-SQL revisions against DATABASE_URL."""

import asyncio
import logging
from logging.config import fileConfig
from pathlib import Path

from dotenv import load_dotenv

from alembic import context

# Load .env from project root before settings are read
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if (PROJECT_ROOT / ".env").exists():
    load_dotenv(PROJECT_ROOT / ".env")

from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402

from campus_leave.config import settings  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

# Revisions are hand-written SQL; no autogenerate metadata
target_metadata = None


def run_migrations_offline() -> None:
    context.configure(
        url=settings.DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(settings.DATABASE_URL)
    logger.info("Running migrations (%s)", settings.ENVIRONMENT)
    async with engine.connect() as connection:
        await connection.run_sync(_run_sync)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
