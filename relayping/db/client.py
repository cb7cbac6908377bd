"""
PostgreSQL access for run history, backed by a psycopg connection pool.

History is optional: the client is only built when a database URL is
configured, and everything that persists snapshots receives it explicitly.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Generator, Iterable, List, Mapping, Optional, Sequence, Union

import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from relayping.logging_utils import perf

LOGGER = logging.getLogger(__name__)

Params = Union[Mapping[str, Any], Sequence[Any]]


class DatabaseClient:
    """Pooled connections plus small query helpers returning dict rows."""

    def __init__(
        self,
        dsn: str,
        *,
        min_size: int = 1,
        max_size: int = 4,
        connection_config: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not dsn:
            raise ValueError("A database DSN is required.")
        if min_size < 1 or max_size < 1 or min_size > max_size:
            raise ValueError("Pool size must be positive and min_size <= max_size.")

        self._pool = ConnectionPool(
            conninfo=dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs=connection_config or {},
        )
        LOGGER.debug("Opened history database pool min=%s max=%s", min_size, max_size)

    @contextmanager
    def connection(self) -> Generator[psycopg.Connection, None, None]:
        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Generator[psycopg.Connection, None, None]:
        """Yield a pooled connection inside a transaction block."""
        with self.connection() as conn:
            with conn.transaction():
                yield conn

    @perf("db.execute", tags={"component": "db"})
    def execute(self, query: str, params: Optional[Params] = None) -> None:
        with self.transaction() as conn:
            with conn.cursor() as cur:
                LOGGER.debug("Executing query: %s params=%s", query, params)
                cur.execute(query, params)

    @perf("db.executemany", tags={"component": "db"})
    def executemany(self, query: str, param_list: Iterable[Params]) -> int:
        """Run ``query`` for every parameter set in one transaction; return the batch size."""
        params = list(param_list)
        if not params:
            LOGGER.debug("Skipping empty batch for statement: %s", query)
            return 0

        with self.transaction() as conn:
            with conn.cursor() as cur:
                LOGGER.debug("Executing batch statement (%s rows): %s", len(params), query)
                cur.executemany(query, params)
        return len(params)

    @perf("db.fetch_all", tags={"component": "db"})
    def fetch_all(self, query: str, params: Optional[Params] = None) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                LOGGER.debug("Fetching rows with query: %s params=%s", query, params)
                cur.execute(query, params)
                return cur.fetchall()

    @perf("db.fetch_one", tags={"component": "db"})
    def fetch_one(self, query: str, params: Optional[Params] = None) -> Optional[Dict[str, Any]]:
        with self.connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                LOGGER.debug("Fetching single row: %s params=%s", query, params)
                cur.execute(query, params)
                return cur.fetchone()

    def run_in_transaction(self, func: Callable[[psycopg.Connection], Any]) -> Any:
        """Call ``func`` with a connection; commit if it returns, roll back if it raises."""
        with self.transaction() as conn:
            return func(conn)

    def close(self) -> None:
        LOGGER.debug("Closing history database pool")
        self._pool.close()

    def __enter__(self) -> "DatabaseClient":
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        self.close()


__all__ = ["DatabaseClient"]
