import asyncio
import os
import sys
from logging.config import fileConfig

# env.py lives in backend/alembic/; 'app' is importable from backend/
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import async_engine_from_config

import app.models  # noqa: F401
from alembic import context
from app.core.config import settings
from app.db.base import Base

MAX_CONNECT_ATTEMPTS = 5

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Only the sync history ledger is migrated; registries live in the cluster
target_metadata = Base.metadata

config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,  # SQLite cannot ALTER in place
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Run migrations over an async engine, retrying while the database comes up."""
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    last_error: Exception | None = None
    for attempt in range(1, MAX_CONNECT_ATTEMPTS + 1):
        try:
            async with connectable.connect() as connection:
                await connection.run_sync(do_run_migrations)
            last_error = None
            break
        except OperationalError as exc:
            last_error = exc
            if attempt >= MAX_CONNECT_ATTEMPTS:
                break
            delay_s = 2 ** (attempt - 1)
            print(
                f"Database not reachable for migrations (attempt {attempt}/{MAX_CONNECT_ATTEMPTS}). "
                f"Retrying in {delay_s}s...",
                flush=True,
            )
            await asyncio.sleep(delay_s)

    await connectable.dispose()
    if last_error is not None:
        raise last_error


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
