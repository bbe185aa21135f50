"""asyncpg pool lifecycle for the usage ledger and conversation store."""

from __future__ import annotations

import asyncio

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from agent_engine.utils.logger import logger

APPLICATION_NAME = "agent-engine"


class ConnectionPoolExhausted(Exception):
    """No database connection could be obtained in time."""


async def create_database_pool(
    dsn: str,
    *,
    min_size: int = 2,
    max_size: int = 10,
    command_timeout: float = 60.0,
    connection_timeout: float = 10.0,
) -> asyncpg.Pool:
    """Open the pool; server-side statement and lock timeouts follow ``command_timeout``.

    Raises:
        ConnectionPoolExhausted: The database did not accept connections within ``connection_timeout``
    """
    timeout_ms = str(int(command_timeout * 1000))
    create = asyncpg.create_pool(
        dsn=dsn,
        min_size=min_size,
        max_size=max_size,
        command_timeout=command_timeout,
        server_settings={
            "application_name": APPLICATION_NAME,
            "statement_timeout": timeout_ms,
            "lock_timeout": timeout_ms,
        },
    )
    try:
        pool = await asyncio.wait_for(create, timeout=connection_timeout)
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(f"Database did not answer within {connection_timeout}s") from e
    except (OSError, asyncpg.PostgresError) as e:
        raise ConnectionPoolExhausted(f"Database connection failed: {e}") from e

    logger.info(f"Database pool open (min={min_size}, max={max_size})")
    return pool


@asynccontextmanager
async def transaction(
    pool: asyncpg.Pool,
    *,
    timeout: float | None = None,
    isolation: str = "read_committed",
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Connection with an open transaction, committed when the block exits cleanly.

    Raises:
        ConnectionPoolExhausted: No connection was free within ``timeout``
    """
    try:
        async with pool.acquire(timeout=timeout) as conn, conn.transaction(isolation=isolation):
            yield conn
    except asyncio.TimeoutError as e:
        raise ConnectionPoolExhausted(f"No database connection free within {timeout}s") from e


async def check_pool_health(pool: asyncpg.Pool) -> dict[str, Any]:
    try:
        async with pool.acquire(timeout=5.0) as conn:
            healthy = await conn.fetchval("SELECT 1") == 1
    except (asyncio.TimeoutError, OSError, asyncpg.PostgresError) as e:
        logger.warning(f"Database health check failed: {e}")
        healthy = False

    return {"healthy": healthy, "pool_size": pool.get_size(), "free_connections": pool.get_idle_size()}


async def graceful_pool_close(pool: asyncpg.Pool, timeout: float = 10.0) -> None:
    """Close the pool, terminating connections still busy after ``timeout``."""
    try:
        await asyncio.wait_for(pool.close(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Database pool did not drain within {timeout}s, terminating connections")
        pool.terminate()
