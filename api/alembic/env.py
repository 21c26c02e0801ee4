"""Alembic environment for the workforce schema.

Migrations run on a synchronous engine built from ``DATABASE_URL``. On
PostgreSQL an advisory lock keeps replicas that start together from
migrating concurrently.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import Connection, create_engine, text

# alembic is launched from api/ or through cli.py; both need api/ importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import models  # noqa: F401,E402
from alembic import context  # noqa: E402
from core.config import get_settings  # noqa: E402
from core.database import Base  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
logger = logging.getLogger("alembic")

MIGRATION_LOCK_KEY = 7_340_219_551
LOCK_WAIT_SECONDS = 120
LOCK_POLL_SECONDS = 2

_SYNC_DRIVERS = {"+asyncpg": "+psycopg2", "+aiosqlite": ""}


def sync_database_url() -> str:
    """DATABASE_URL with the async driver swapped for its sync counterpart."""
    url = get_settings().database_url
    for async_driver, sync_driver in _SYNC_DRIVERS.items():
        url = url.replace(async_driver, sync_driver)
    return url


@contextmanager
def migration_lock(connection: Connection) -> Iterator[None]:
    if connection.dialect.name != "postgresql":
        yield
        return

    deadline = time.monotonic() + LOCK_WAIT_SECONDS
    params = {"key": MIGRATION_LOCK_KEY}
    while not connection.execute(
        text("SELECT pg_try_advisory_lock(:key)"), params
    ).scalar():
        if time.monotonic() >= deadline:
            raise RuntimeError(
                f"Migration lock not acquired within {LOCK_WAIT_SECONDS}s; "
                "another replica may be stuck migrating"
            )
        logger.debug("Waiting for migration lock")
        time.sleep(LOCK_POLL_SECONDS)
    connection.commit()
    logger.info("Acquired migration lock")

    try:
        yield
    finally:
        connection.execute(text("SELECT pg_advisory_unlock(:key)"), params)
        logger.info("Released migration lock")


def run_migrations_offline() -> None:
    context.configure(
        url=sync_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(sync_database_url())
    with engine.connect() as connection, migration_lock(connection):
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            # SQLite cannot ALTER most constraints in place
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
