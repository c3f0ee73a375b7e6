"""Alembic environment for the settlement engine schema.

Online runs use the async engine from DATABASE_URL; offline runs render SQL
through the matching sync driver.
"""

import asyncio
from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from sqlmodel import SQLModel

from alembic import context

load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Registers every table on SQLModel.metadata
import ton_lottery.models  # noqa: F401, E402
from ton_lottery.core.config import get_settings  # noqa: E402

target_metadata = SQLModel.metadata

SYNC_DRIVERS = {"+aiomysql": "+pymysql", "+aiosqlite": ""}


def database_url(sync: bool = False) -> str:
    url = get_settings().database_url
    if sync:
        for async_driver, sync_driver in SYNC_DRIVERS.items():
            url = url.replace(async_driver, sync_driver)
    return url


def run_migrations_offline() -> None:
    """Emit migration SQL without a live connection."""
    context.configure(
        url=database_url(sync=True),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = database_url()

    connectable = async_engine_from_config(configuration, prefix="sqlalchemy.", poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
