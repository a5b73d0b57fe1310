"""
PostgreSQL client for the auth tables.

psycopg2 ThreadedConnectionPool, one pool per database URL shared by every
client instance. Each statement borrows a connection and commits before
returning it, so a conditional UPDATE ... RETURNING (single-use token
consumption) is atomic across concurrent requests.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple
from uuid import UUID

import psycopg2
import psycopg2.extras
import psycopg2.pool

logger = logging.getLogger(__name__)

Params = Tuple | Dict | None


def _to_db_value(value: Any) -> Any:
    """UUIDs go over the wire as text; containers are converted recursively."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, tuple):
        return tuple(_to_db_value(v) for v in value)
    if isinstance(value, dict):
        return {k: _to_db_value(v) for k, v in value.items()}
    return value


class PostgresClient:
    """
    Pooled PostgreSQL access returning plain dict rows.

    Usage:
        db = PostgresClient(database_url)
        user = db.execute_single("SELECT * FROM users WHERE email = %s", (email,))
    """

    _pools: Dict[str, psycopg2.pool.ThreadedConnectionPool] = {}
    _pools_lock = threading.RLock()

    def __init__(self, database_url: str, min_connections: int = 2, max_connections: int = 20):
        self._database_url = database_url
        self._min_connections = min_connections
        self._max_connections = max_connections
        self._pool()

    def _pool(self) -> psycopg2.pool.ThreadedConnectionPool:
        with self._pools_lock:
            pool = self._pools.get(self._database_url)
            if pool is None:
                pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self._min_connections,
                    maxconn=self._max_connections,
                    dsn=self._database_url,
                    connect_timeout=30,
                )
                self._pools[self._database_url] = pool
                logger.info(
                    f"Connection pool created ({self._min_connections}-{self._max_connections} connections)"
                )
            return pool

    @contextmanager
    def connection(self):
        """Borrow a pooled connection. Rolled back if the block raises."""
        pool = self._pool()
        conn = pool.getconn()
        if conn is None:
            raise RuntimeError("Could not get connection from pool")

        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    def _run(self, query: str, params: Params, fetch: bool) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
                cur.execute(query, _to_db_value(params))
                rows = [dict(row) for row in cur.fetchall()] if fetch and cur.description else []
                conn.commit()
                return rows

    def execute(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """Run a query and return every row. Statements without a result set give []."""
        return self._run(query, params, fetch=True)

    def execute_single(self, query: str, params: Params = None) -> Dict[str, Any] | None:
        """First row or None."""
        rows = self.execute(query, params)
        return rows[0] if rows else None

    def execute_returning(self, query: str, params: Params = None) -> List[Dict[str, Any]]:
        """INSERT/UPDATE/DELETE ... RETURNING. An empty list means no row matched."""
        return self._run(query, params, fetch=True)

    def execute_script(self, sql: str) -> None:
        """Run a multi-statement script (DDL) in one transaction."""
        with self.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql)
            conn.commit()

    def close(self) -> None:
        """Close this URL's pool. Other URLs are untouched."""
        with self._pools_lock:
            pool = self._pools.pop(self._database_url, None)
            if pool is not None:
                pool.closeall()
                logger.info("Connection pool closed")
