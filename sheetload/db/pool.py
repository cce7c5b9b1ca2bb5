from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import psycopg2
from psycopg2.extensions import TRANSACTION_STATUS_IDLE, make_dsn
from psycopg2.pool import PoolError as DriverPoolError
from psycopg2.pool import ThreadedConnectionPool

from sheetload.models.config_models import DatabaseConfig

"""Connection pool registry.

The caller creates one registry, passes it to every import, and closes it
when done. Pools are keyed by destination database name (None = the
configured default) and created on first use.

接続情報の解決優先順位:
    1. DATABASE_URL / PGDSN 環境変数 (DSN 全体)
    2. config の database.dsn
    3. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE 環境変数
       (不足分は config の database セクションで補完)
A non-default destination overrides only ``dbname``.

Connections handed out run with autocommit=True: the orchestrator issues
BEGIN / COMMIT / ROLLBACK itself, so catalog queries done before the import
starts run outside any transaction.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "PoolError",
    "ConnectionPoolRegistry",
    "resolve_dsn",
]

DEFAULT_KEY = "<default>"

PoolFactory = Callable[[str], Any]


class PoolError(Exception):
    """Raised when a connection cannot be obtained."""


def resolve_dsn(
    db_cfg: DatabaseConfig,
    database: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Build a libpq DSN for ``database`` (None = default database)."""
    env = os.environ if environ is None else environ
    dsn = env.get("DATABASE_URL") or env.get("PGDSN") or db_cfg.dsn
    if dsn:
        return make_dsn(dsn, dbname=database) if database else dsn
    port = env.get("PGPORT") or (str(db_cfg.port) if db_cfg.port else "5432")
    return make_dsn(
        host=env.get("PGHOST") or db_cfg.host or "localhost",
        port=port,
        user=env.get("PGUSER") or db_cfg.user or "postgres",
        password=env.get("PGPASSWORD") or db_cfg.password or None,
        dbname=database or env.get("PGDATABASE") or db_cfg.database or "postgres",
    )


def _connection_is_reusable(conn: Any) -> bool:
    if conn.closed:
        return False
    # BEGIN したまま返却された接続は再利用しない
    return conn.get_transaction_status() == TRANSACTION_STATUS_IDLE


class ConnectionPoolRegistry:
    """Explicitly owned set of connection pools, one per destination database."""

    def __init__(
        self,
        db_config: DatabaseConfig | None = None,
        *,
        minconn: int = 1,
        maxconn: int = 4,
        pool_factory: PoolFactory | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.db_config = db_config or DatabaseConfig()
        self.minconn = minconn
        self.maxconn = maxconn
        self._pool_factory = pool_factory or self._default_pool_factory
        self._environ = environ
        self._pools: dict[str, Any] = {}
        self._lock = threading.Lock()
        self._closed = False

    def _default_pool_factory(self, dsn: str) -> ThreadedConnectionPool:
        return ThreadedConnectionPool(self.minconn, self.maxconn, dsn=dsn)

    def pool_for(self, database: str | None = None) -> Any:
        key = database or DEFAULT_KEY
        with self._lock:
            if self._closed:
                raise PoolError("connection pool registry is closed")
            pool = self._pools.get(key)
            if pool is None:
                dsn = resolve_dsn(self.db_config, database, self._environ)
                try:
                    pool = self._pool_factory(dsn)
                except psycopg2.Error as e:
                    raise PoolError(f"cannot connect to database {key}: {e}") from e
                self._pools[key] = pool
                logger.debug("created connection pool for %s", key)
            return pool

    @contextmanager
    def connection(self, database: str | None = None) -> Iterator[Any]:
        """Borrow a connection; it is returned to its pool on every exit path."""
        pool = self.pool_for(database)
        try:
            conn = pool.getconn()
        except (psycopg2.Error, DriverPoolError) as e:
            raise PoolError(f"cannot obtain connection for {database or DEFAULT_KEY}: {e}") from e
        try:
            conn.autocommit = True
            yield conn
        finally:
            pool.putconn(conn, close=not _connection_is_reusable(conn))

    def close_all(self) -> None:
        with self._lock:
            pools = list(self._pools.items())
            self._pools.clear()
            self._closed = True
        for key, pool in pools:
            pool.closeall()
            logger.debug("closed connection pool for %s", key)

    def __enter__(self) -> ConnectionPoolRegistry:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close_all()
