"""
Alembic Environment Configuration for SleepVision

Manages the remote document store schema only:
- Async engine (asyncpg) resolved from DATABASE_URL or the Supabase password
- Autogenerate limited to the tables in REMOTE_TABLES; the local cache
  creates its own table at startup and Supabase-owned schemas are ignored
"""

import asyncio
import os
import sys
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine
from alembic import context

# Make `app` importable when alembic runs from backend/
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlmodel import SQLModel

from app.config.settings import settings
from app.infrastructure.db.database import resolve_remote_database_url
from app.infrastructure.db.models import REMOTE_TABLES


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = SQLModel.metadata

MANAGED_TABLES = {table.name for table in REMOTE_TABLES}

# Schemas provisioned and migrated by Supabase itself
SUPABASE_SCHEMAS = {"auth", "storage", "realtime", "extensions", "graphql", "graphql_public", "vault"}


def include_object(object, name, type_, reflected, compare_to):
    """Only diff the tables this service owns."""
    if type_ == "table":
        if getattr(object, "schema", None) in SUPABASE_SCHEMAS:
            return False
        return name in MANAGED_TABLES
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL for the remote schema without connecting."""
    _configure(
        url=resolve_remote_database_url(settings),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    _configure(connection=connection, compare_server_default=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Apply migrations through a throwaway async engine."""
    engine = create_async_engine(resolve_remote_database_url(settings), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
