"""Database connection utilities."""
import json

import asyncpg
from content_jobs.config import settings

_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection):
    """Decode JSON/JSONB columns to Python objects on every pooled connection."""
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )


async def get_db_pool() -> asyncpg.Pool:
    """Get or create database connection pool."""
    global _pool

    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.DATABASE_URL,
            min_size=2,
            max_size=max(10, settings.WORKER_CONCURRENCY + 2),
            init=_init_connection,
        )

    return _pool


async def close_db_pool():
    """Close database connection pool."""
    global _pool

    if _pool is not None:
        await _pool.close()
        _pool = None


async def execute_query(query: str, *args):
    """Execute a database query."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        return await conn.fetch(query, *args)


async def execute_one(query: str, *args):
    """Execute a query and return one result."""
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        return await conn.fetchrow(query, *args)


async def execute_update(query: str, *args):
    """Execute an update/insert query.

    Returns the asyncpg status string, e.g. ``"UPDATE 3"``.
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        return await conn.execute(query, *args)


async def execute_in_transaction(operations):
    """
    Execute multiple database operations in a transaction.

    Args:
        operations: Async function that takes a connection and performs operations

    Returns:
        Result of the operations function

    Example:
        async def insert_jobs(conn):
            await conn.executemany("INSERT INTO generation_jobs ...", rows)
            return len(rows)

        result = await execute_in_transaction(insert_jobs)
    """
    pool = await get_db_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            return await operations(conn)


def affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg command status (``"UPDATE 3"`` -> 3)."""
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0
