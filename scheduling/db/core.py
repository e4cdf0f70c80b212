"""psycopg connection pool shared by the postgres store and migrations."""

import logging
from contextlib import asynccontextmanager

import psycopg
from psycopg_pool import AsyncConnectionPool

from scheduling.config import get_settings

_logger = logging.getLogger(__name__)

_pool: AsyncConnectionPool | None = None


def _get_dsn() -> str:
    return get_settings().postgres.get_dsn()


async def init_pool() -> None:
    global _pool
    if _pool is not None:
        return
    settings = get_settings()
    pg = settings.postgres
    _pool = AsyncConnectionPool(
        pg.get_dsn(),
        min_size=pg.pool_min_size,
        max_size=pg.pool_max_size,
        timeout=pg.pool_timeout,
        max_lifetime=pg.pool_max_lifetime,
        max_idle=pg.pool_max_idle,
        check=AsyncConnectionPool.check_connection,
        open=False,
    )
    await _pool.open()
    _logger.info(
        f"Database connection pool initialized "
        f"(min={pg.pool_min_size}, max={pg.pool_max_size}, timeout={pg.pool_timeout}s)"
    )
    if settings.features.migrations:
        # Import here to avoid circular imports
        from scheduling.db.schema import ensure_schema

        await ensure_schema()


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None
        _logger.info("Database connection pool closed")


@asynccontextmanager
async def _get_connection(autocommit: bool = True):
    """Pooled connection when the pool is up, otherwise a one-off connection."""
    if _pool is not None:
        async with _pool.connection() as conn:
            await conn.set_autocommit(autocommit)
            yield conn
    else:
        async with await psycopg.AsyncConnection.connect(_get_dsn(), autocommit=autocommit) as conn:
            yield conn


def get_pool_stats() -> dict[str, object]:
    """Get current pool statistics for the health endpoint."""
    if _pool is None:
        return {"status": "not_initialized"}
    stats = _pool.get_stats()
    return {
        "status": "active",
        "size": stats["pool_size"],
        "available": stats["pool_available"],
        "waiting": stats["requests_waiting"],
        "min_size": stats["pool_min"],
        "max_size": stats["pool_max"],
    }


__all__ = [
    "_get_connection",
    "close_pool",
    "get_pool_stats",
    "init_pool",
]
