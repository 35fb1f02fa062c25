"""Process-wide asyncpg pool for the sync server side."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg

from LSG_Database.lsg_server import config
from LSG_Database.lsg_shared.errors import ConnectionPoolError

logger = logging.getLogger(__name__)

pool: Optional[asyncpg.Pool] = None


async def create_pool(dsn: str = config.PG_DSN, min_size: int = config.PG_POOL_MIN_SIZE,
                      max_size: int = config.PG_POOL_MAX_SIZE) -> asyncpg.Pool:
    global pool
    if pool is not None:
        return pool

    try:
        pool = await asyncpg.create_pool(dsn=dsn, min_size=min_size, max_size=max_size)
    except (asyncpg.PostgresError, OSError) as e:
        raise ConnectionPoolError(f"Failed to create pool: {e}")

    logger.debug("sync pool open (min=%d, max=%d)", min_size, max_size)
    return pool


async def get_pool() -> asyncpg.Pool:
    if pool is None:
        raise ConnectionPoolError("Pool not initialized. Call create_pool() first.")
    return pool


async def close_pool() -> None:
    global pool
    if pool is None:
        return
    closing, pool = pool, None
    try:
        await asyncio.wait_for(closing.close(), timeout=config.PG_POOL_CLOSE_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning("sync pool did not close within %.1fs, terminating", config.PG_POOL_CLOSE_TIMEOUT)
        closing.terminate()


@asynccontextmanager
async def pool_session(dsn: str = config.PG_DSN) -> AsyncIterator[asyncpg.Pool]:
    """Open the pool for the duration of one block, e.g. a single CLI sync run."""
    p = await create_pool(dsn)
    try:
        yield p
    finally:
        await close_pool()


async def health_check() -> bool:
    if pool is None:
        return False
    try:
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1
    except (asyncpg.PostgresError, OSError) as e:
        logger.warning("sync pool health check failed: %s", e)
        return False
