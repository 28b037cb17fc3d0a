# lotbot/infra/db_async.py
"""
asyncpg connection pool for the hosted Postgres that holds ``questions``,
``webhook_deliveries`` and ``access_leads``.

    async with db_conn() as conn:          # autocommit
        await conn.execute(...)

    async with db_conn(autocommit=False) as conn:   # one transaction
        ...
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import asyncpg

from lotbot.config import settings
from lotbot.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


async def init_pool() -> None:
    """Create the pool once; later calls are no-ops."""
    global _pool
    if _pool is not None:
        return

    if not settings.database_url:
        raise RuntimeError("DATABASE_URL is not set")

    _pool = await asyncpg.create_pool(
        dsn=settings.database_url,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        command_timeout=20,
        # pgbouncer in transaction mode cannot reuse prepared statements
        statement_cache_size=0,
        server_settings={"application_name": "lotbot", "timezone": "UTC"},
    )
    logger.info(f"Postgres pool ready: size={settings.pg_pool_min}..{settings.pg_pool_max}")


async def close_pool() -> None:
    global _pool
    if _pool is None:
        return

    pool, _pool = _pool, None
    await pool.close()
    logger.info("Postgres pool closed")


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a pooled connection.

    With ``autocommit=False`` everything inside the block runs in a single
    transaction that commits on exit and rolls back on any exception.
    """
    if _pool is None:
        raise RuntimeError("Postgres pool not initialized; call init_pool() first")

    async with _pool.acquire() as conn:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
