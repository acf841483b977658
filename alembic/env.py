"""Alembic environment for the authentication schema.

The database URL comes from ``ADAPTIVE_MFA_DATABASE_URL`` unless one is
passed on the command line with ``alembic -x db_url=... upgrade head``.
Migrations are hand-written, so there is no target metadata.
"""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from adaptive_mfa.core.config import get_settings
from alembic import context

VERSION_TABLE = "adaptive_mfa_alembic_version"

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _database_url() -> str:
    override = context.get_x_argument(as_dictionary=True).get("db_url")
    url = override or get_settings().asyncpg_url
    if url.startswith("postgresql://"):
        url = "postgresql+asyncpg://" + url.removeprefix("postgresql://")
    return url


def _configure(**kwargs: object) -> None:
    context.configure(
        target_metadata=None,
        version_table=VERSION_TABLE,
        transaction_per_migration=True,
        **kwargs,
    )


def _migrate(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    engine = create_async_engine(_database_url(), poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    # Emit SQL for review without a connection.
    _configure(
        url=_database_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()
else:
    asyncio.run(_migrate_online())
