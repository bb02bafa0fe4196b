"""
Postgres connection management with pooling.
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

import psycopg
from psycopg_pool import ConnectionPool

logger = logging.getLogger(__name__)


def silence_psycopg_logging(level=logging.WARNING):
    """
    Silence psycopg / psycopg_pool internal logging.
    """
    for name in (
        "psycopg",
        "psycopg.pool",
        "psycopg.pq",
        "psycopg_pool",
        "psycopg_pool.pool",
    ):
        lib_logger = logging.getLogger(name)
        lib_logger.setLevel(level)
        for h in lib_logger.handlers:
            h.setLevel(level)


class ScoreStore:
    """
    Pooled storage capability used by the mutation scheduler.

    Statements run in autocommit mode; errors propagate to the caller.

    Usage:
        store = ScoreStore(conninfo, min_size=4, max_size=10)
        with store.connection() as conn:
            rowcount = store.execute(conn, sql, params)
        store.close()
    """

    def __init__(self, conninfo: str, min_size: int = 2, max_size: int = 10, timeout: float = 30.0):
        self.conninfo = conninfo
        self.pool = ConnectionPool(
            conninfo=conninfo,
            min_size=min_size,
            max_size=max_size,
            timeout=timeout,
            kwargs={'autocommit': True},
            open=True,
        )

    @contextmanager
    def connection(self):
        """Borrow a connection from the pool."""
        with self.pool.connection() as conn:
            yield conn

    def execute(self, conn, statement: str, params: Optional[Dict[str, Any]] = None) -> int:
        """
        Execute one statement.

        Returns:
            Number of affected rows
        """
        cursor = conn.execute(statement, params)
        return cursor.rowcount

    def close(self):
        """Close all connections in the pool."""
        self.pool.close()


def get_single_connection(conninfo: str, autocommit: bool = True) -> psycopg.Connection:
    """
    Get a single connection (not from pool).
    Useful for setup and for LISTEN connections.
    """
    return psycopg.connect(conninfo, autocommit=autocommit)


def check_connection(conninfo: str) -> bool:
    """Test the Postgres connection."""
    try:
        with get_single_connection(conninfo) as conn:
            version = conn.execute("SELECT version();").fetchone()
        print(f"✅ Successfully connected to Postgres")
        print(f"   PostgreSQL version: {version[0]}")
        return True
    except psycopg.Error as e:
        print(f"❌ Failed to connect to Postgres: {e}")
        return False
