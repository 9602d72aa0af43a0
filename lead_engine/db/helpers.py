"""
Query helpers for the repository layer.

Every helper runs on the caller's connection when one is passed (so several
statements can share a transaction) and borrows a pooled one otherwise.
psycopg errors surface as DatabaseError: connection-level failures are
recoverable, anything the server rejected is not.
"""

import asyncio
import functools
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg

from lead_engine.db.pool import get_db_connection, get_db_transaction
from lead_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@contextmanager
def translate_errors(operation: str, query: str = "") -> Iterator[None]:
    try:
        yield
    except psycopg.OperationalError as e:
        logger.error("Database error", operation=operation, query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e
    except psycopg.Error as e:
        logger.error("Database error", operation=operation, query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation, recoverable=False) from e


async def _run(conn: psycopg.AsyncConnection, query: str, params: tuple, fetch: str | None):
    async with conn.cursor() as cur:
        await cur.execute(query, params)
        if fetch == "one":
            return await cur.fetchone()
        if fetch == "all":
            return await cur.fetchall()
        return cur.rowcount


async def _execute(query: str, params: tuple, fetch: str | None, connection: psycopg.AsyncConnection | None):
    with translate_errors(f"fetch_{fetch}" if fetch else "execute", query):
        if connection is not None:
            return await _run(connection, query, params, fetch)
        async with await get_db_connection() as conn:
            return await _run(conn, query, params, fetch)


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Dict with row data or None if no results
    """
    return await _execute(query, params, "one", connection)


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    return await _execute(query, params, "all", connection)


async def fetch_val(query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None) -> Any:
    """First column of the first row, or None."""
    row = await fetch_one(query, params, connection=connection)
    return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Execute query and return number of affected rows."""
    return await _execute(query, params, None, connection)


async def apply_schema() -> None:
    """Create tables and indexes. Every statement in schema.sql is idempotent."""
    schema_sql = SCHEMA_PATH.read_text(encoding="utf-8")
    with translate_errors("migrate"):
        async with await get_db_transaction() as conn:
            await conn.execute(schema_sql)
    logger.info("Schema applied", path=str(SCHEMA_PATH))


def with_db_retry(max_retries: int = 1, base_delay: float = 0.2):
    """
    Retry a coroutine on recoverable DatabaseError (connection drops,
    timeouts). Integrity and data errors propagate immediately.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    if not e.recoverable or attempt >= max_retries:
                        logger.error(
                            "Database operation failed",
                            operation=func.__name__,
                            attempts=attempt + 1,
                            error=str(e),
                        )
                        raise
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
