"""MySQL client for the charity register store.

Thread-local connection reuse over the MySQL protocol. Each thread gets a
persistent connection that reconnects on failure; the crawler's worker
threads and the importer never share a connection.
"""

import os
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, Generator

import pymysql
from pymysql.cursors import DictCursor

# Callers catch this without importing pymysql themselves
DatabaseError = pymysql.MySQLError

_thread_local = threading.local()


@lru_cache(maxsize=1)
def _get_config() -> dict:
    """Get connection configuration.

    Environment variables:
        CHARITY_DB_HOST: Database host (default: 127.0.0.1)
        CHARITY_DB_PORT: Database port (default: 3306)
        CHARITY_DB_USER: Database user (default: root)
        CHARITY_DB_PASSWORD: Database password (default: empty)
        CHARITY_DB_DATABASE: Database name (default: charity_register)

    Returns:
        Connection config dict
    """
    return {
        "host": os.environ.get("CHARITY_DB_HOST", "127.0.0.1"),
        "port": int(os.environ.get("CHARITY_DB_PORT", "3306")),
        "user": os.environ.get("CHARITY_DB_USER", "root"),
        "password": os.environ.get("CHARITY_DB_PASSWORD", ""),
        "database": os.environ.get("CHARITY_DB_DATABASE", "charity_register"),
        "autocommit": True,
        "charset": "utf8mb4",
        "cursorclass": DictCursor,
    }


def get_connection() -> pymysql.Connection:
    """Get a thread-local database connection, reusing if alive.

    Returns:
        PyMySQL connection (reused per thread, reconnects on failure)
    """
    conn = getattr(_thread_local, "conn", None)
    if conn is not None:
        try:
            conn.ping(reconnect=False)
            return conn
        except pymysql.Error:
            # Connection is dead, close and reconnect
            try:
                conn.close()
            except pymysql.Error:
                pass
    conn = pymysql.connect(**_get_config())
    _thread_local.conn = conn
    return conn


@contextmanager
def get_cursor() -> Generator[Any, None, None]:
    """Context manager for an autocommit cursor.

    Yields:
        PyMySQL DictCursor

    Example:
        with get_cursor() as cursor:
            cursor.execute("SELECT * FROM organizations WHERE registered_number = %s", (number,))
            row = cursor.fetchone()
    """
    conn = get_connection()
    try:
        with conn.cursor() as cursor:
            yield cursor
    except pymysql.OperationalError:
        # Connection went stale between ping and use; the next call reconnects
        _thread_local.conn = None
        raise


@contextmanager
def transaction() -> Generator[Any, None, None]:
    """Run several statements atomically on this thread's connection.

    Commits when the block exits normally; rolls back and re-raises on any
    exception, including a failed commit.

    Example:
        with transaction() as cursor:
            organizations.upsert(org, cursor=cursor)
            trustees.upsert(trustee, cursor=cursor)
    """
    conn = get_connection()
    conn.begin()
    try:
        with conn.cursor() as cursor:
            yield cursor
        conn.commit()
    except BaseException:
        try:
            conn.rollback()
        except pymysql.Error:
            # The connection is gone; drop it so the next call reconnects
            _thread_local.conn = None
        raise


def execute_query(sql: str, params: tuple | None = None, fetch: str = "all") -> list[dict] | dict | None:
    """Execute a query and return results.

    Args:
        sql: SQL query with %s placeholders
        params: Query parameters
        fetch: 'all' for fetchall(), 'one' for fetchone(), 'none' for no fetch

    Returns:
        Query results as list of dicts, single dict, or None

    Example:
        rows = execute_query("SELECT * FROM scores")
        row = execute_query("SELECT * FROM scores WHERE registered_number = %s", (number,), fetch="one")
    """
    with get_cursor() as cursor:
        return _run(cursor, sql, params, fetch)


def _run(cursor, sql: str, params: tuple | None, fetch: str):
    cursor.execute(sql, params or ())
    if fetch == "all":
        return cursor.fetchall()
    elif fetch == "one":
        return cursor.fetchone()
    return None


def execute(sql: str, params: tuple | None = None, fetch: str = "none", cursor=None):
    """Execute on the given transaction cursor, or autocommit when there is none."""
    if cursor is not None:
        return _run(cursor, sql, params, fetch)
    return execute_query(sql, params, fetch=fetch)


def check_connection() -> bool:
    """Test database connectivity.

    Returns:
        True if connection succeeds, False otherwise
    """
    try:
        with get_cursor() as cursor:
            cursor.execute("SELECT 1")
            return True
    except pymysql.Error:
        return False
