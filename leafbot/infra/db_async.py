# leafbot/infra/db_async.py
"""
asyncpg connection pool for the Postgres context store.
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from leafbot.config import settings
from leafbot.infra.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None

CONTEXT_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS contexts (
    target_platform TEXT NOT NULL,
    target_id TEXT NOT NULL,
    context JSONB NOT NULL DEFAULT '{}'::jsonb,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    PRIMARY KEY (target_platform, target_id)
)
"""


async def init_pool(dsn: str | None = None) -> None:
    """Create the pool on startup and make sure the contexts table exists."""
    global _pool

    if _pool is not None:
        return

    dsn = dsn or settings.database_url
    if not dsn:
        raise RuntimeError("database_url is not configured")

    logger.info("Initializing asyncpg connection pool")

    _pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        command_timeout=30,
        server_settings={
            'application_name': 'leafbot',
        }
    )

    async with _pool.acquire() as conn:
        await conn.execute(CONTEXT_TABLE_DDL)

    logger.info(f"Connection pool created: min={settings.pg_pool_min}, max={settings.pg_pool_max}")


async def close_pool() -> None:
    """Close connection pool on shutdown"""
    global _pool

    if _pool is None:
        return

    logger.info("Closing connection pool")
    await _pool.close()
    _pool = None


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a connection from the pool.

    With ``autocommit=False`` the block runs inside a transaction that is
    committed on exit and rolled back on error.
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    conn = await _pool.acquire()
    try:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn
    finally:
        await _pool.release(conn)
