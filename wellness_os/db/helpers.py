"""
Database helper functions for common patterns.
Reduces boilerplate in the repositories; every helper takes the pool explicitly.
"""

import asyncio
from collections.abc import Sequence
from typing import Any

import psycopg

from wellness_os.db.pool import DatabasePoolManager
from wellness_os.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def fetch_one(
    pool: DatabasePoolManager, query: str, params: tuple = ()
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        pool: Initialized pool manager
        query: SQL query with %s placeholders
        params: Query parameters

    Returns:
        Dict with row data or None if no results
    """
    try:
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
                return row if row else None

    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one") from e


async def fetch_all(
    pool: DatabasePoolManager, query: str, params: tuple = ()
) -> list[dict[str, Any]]:
    """
    Execute query and return all rows as list of dicts.

    Args:
        pool: Initialized pool manager
        query: SQL query with %s placeholders
        params: Query parameters

    Returns:
        List of dicts with row data
    """
    try:
        async with pool.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    except psycopg.Error as e:
        logger.error("Database fetch_all error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_all") from e


async def execute_query(
    pool: DatabasePoolManager, query: str, params: tuple | dict = ()
) -> int:
    """
    Execute query and return number of affected rows.

    Conditional writes rely on the row count: zero means the guard did not match.
    """
    try:
        async with pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

    except psycopg.Error as e:
        logger.error("Database execute error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="execute") from e


async def execute_many(
    pool: DatabasePoolManager, query: str, params_seq: Sequence[tuple]
) -> int:
    """
    Run one statement for every parameter tuple inside a single transaction.

    Returns:
        Number of parameter tuples written

    Raises:
        DatabaseError: not recoverable; the caller decides whether to retry the batch
    """
    if not params_seq:
        return 0

    try:
        async with pool.transaction() as conn:
            async with conn.cursor() as cur:
                await cur.executemany(query, params_seq)

        logger.debug("Batch write completed", row_count=len(params_seq))
        return len(params_seq)

    except psycopg.Error as e:
        logger.error("Batch write failed", row_count=len(params_seq), error=str(e))
        raise DatabaseError(
            f"Batch write failed: {e}", operation="execute_many", recoverable=False
        ) from e


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Decorator to retry database operations on temporary failures.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay between retries (exponential backoff)
    """

    def decorator(func):
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except DatabaseError as e:
                    cause = e.__cause__
                    if not isinstance(cause, psycopg.OperationalError) or attempt >= max_retries:
                        raise
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
