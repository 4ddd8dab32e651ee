import threading
from concurrent.futures import Future
from contextlib import contextmanager
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Iterator, List, Mapping, NamedTuple, Optional

import psycopg2
import psycopg2.extras
from psycopg2.pool import PoolError, ThreadedConnectionPool

from src.reports_api.config import Settings, get_settings
from src.reports_api.errors import ConnectionUnavailable
from src.reports_api.logging_config import get_logger

logger = get_logger(__name__)

PROBE_QUERY = "SELECT 1"

# Errors that mean the pool (or one of its connections) is unusable.
_POOL_ERRORS = (psycopg2.Error, PoolError)


class PoolState(str, Enum):
    absent = "absent"
    initializing = "initializing"
    live = "live"
    broken = "broken"


def build_pool(settings: Settings) -> ThreadedConnectionPool:
    """Create a psycopg2 pool from settings. TLS is required but certificates are not verified."""
    return ThreadedConnectionPool(
        minconn=settings.db_pool_min,
        maxconn=settings.db_pool_max,
        user=settings.db_user,
        password=settings.db_password,
        host=settings.db_host,
        port=settings.db_port,
        dbname=settings.db_name,
        sslmode=settings.db_sslmode,
        connect_timeout=settings.db_connect_timeout,
        options=f"-c statement_timeout={settings.db_request_timeout_ms}",
        application_name="reports-api",
    )


def _probe(conn) -> None:
    with conn.cursor() as cur:
        cur.execute(PROBE_QUERY)
        cur.fetchone()


def _release(pool, conn, close: bool = False) -> None:
    # The pool may have been discarded by a concurrent reconnect.
    try:
        pool.putconn(conn, close=close)
    except PoolError:
        conn.close()


class ConnectionManager:
    """
    Owns the single process-wide pool handle.

    The handle is created lazily on the first acquire() (or eagerly by
    init_db_pool at startup). Concurrent callers during creation all wait on
    the same in-flight future, so only one connect attempt is made. Every
    acquire() probes the borrowed connection; a failed probe discards the
    handle and rebuilds it once before giving up.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        pool_factory: Optional[Callable[[], Any]] = None,
        max_connections: Optional[int] = None,
        wait_timeout: Optional[float] = None,
    ) -> None:
        settings = settings or get_settings()
        if pool_factory is None:
            pool_factory = partial(build_pool, settings)
        self._pool_factory = pool_factory
        # Callers beyond the pool size queue here instead of failing fast.
        self._slots = threading.BoundedSemaphore(max_connections or settings.db_pool_max)
        self._wait_timeout = settings.db_connect_timeout if wait_timeout is None else wait_timeout
        self._lock = threading.Lock()
        self._pool = None
        self._pending: Optional[Future] = None
        self._state = PoolState.absent

    @property
    def state(self) -> PoolState:
        return self._state

    def _ensure_pool(self):
        with self._lock:
            if self._state is PoolState.live and self._pool is not None:
                return self._pool
            previous = self._state
            if self._pending is None:
                self._pending = Future()
                self._state = PoolState.initializing
                owner = True
            else:
                owner = False
            pending = self._pending

        if not owner:
            return pending.result()

        try:
            pool = self._connect()
        except Exception as exc:
            with self._lock:
                self._pending = None
                self._state = PoolState.absent if previous is PoolState.absent else PoolState.broken
            pending.set_exception(exc)
            raise

        with self._lock:
            self._pool = pool
            self._state = PoolState.live
            self._pending = None
        pending.set_result(pool)
        return pool

    def _connect(self):
        logger.info("Connecting to database...")
        try:
            pool = self._pool_factory()
        except _POOL_ERRORS as exc:
            logger.error("Database connection failed: %s", exc)
            raise ConnectionUnavailable() from exc

        try:
            conn = pool.getconn()
            _probe(conn)
        except _POOL_ERRORS as exc:
            logger.error("Database connection test failed: %s", exc)
            _close_quietly(pool)
            raise ConnectionUnavailable() from exc
        pool.putconn(conn)
        logger.info("Database connected successfully")
        return pool

    def _invalidate(self, pool) -> None:
        """Discard `pool` if it is still the current handle."""
        with self._lock:
            if self._pool is not pool:
                return
            self._pool = None
            self._state = PoolState.broken
        _close_quietly(pool)

    def _checkout(self, pool):
        try:
            conn = pool.getconn()
        except PoolError as exc:
            if "exhausted" in str(exc):
                logger.warning("Database connection pool exhausted")
                raise ConnectionUnavailable("Database connection pool exhausted") from exc
            raise
        try:
            _probe(conn)
        except _POOL_ERRORS:
            _release(pool, conn, close=True)
            raise
        return conn

    @contextmanager
    def acquire(self) -> Iterator[Any]:
        """
        Borrow a live connection from the pool for the duration of the block.

        Waits up to the connect timeout when every connection is in use.
        """
        if not self._slots.acquire(timeout=self._wait_timeout):
            logger.warning("Timed out after %ss waiting for a database connection", self._wait_timeout)
            raise ConnectionUnavailable("Database connection pool exhausted")
        try:
            with self._borrow() as conn:
                yield conn
        finally:
            self._slots.release()

    @contextmanager
    def _borrow(self) -> Iterator[Any]:
        pool = self._ensure_pool()
        try:
            conn = self._checkout(pool)
        except ConnectionUnavailable:
            raise
        except _POOL_ERRORS as exc:
            logger.warning("Database connection lost, attempting to reconnect: %s", exc)
            self._invalidate(pool)
            pool = self._ensure_pool()
            try:
                conn = self._checkout(pool)
            except _POOL_ERRORS as retry_exc:
                logger.error("Database still unreachable after reconnect: %s", retry_exc)
                self._invalidate(pool)
                raise ConnectionUnavailable() from retry_exc

        try:
            yield conn
        finally:
            _release(pool, conn)

    def close(self) -> None:
        """Close every pooled connection and return to the absent state."""
        with self._lock:
            pool = self._pool
            self._pool = None
            self._state = PoolState.absent
        if pool is not None:
            _close_quietly(pool)
            logger.info("Database connection closed")


def _close_quietly(pool) -> None:
    try:
        pool.closeall()
    except _POOL_ERRORS as exc:
        logger.warning("Error while closing database pool: %s", exc)


_MANAGER: Optional[ConnectionManager] = None
_MANAGER_LOCK = threading.Lock()


# PUBLIC_INTERFACE
def get_manager() -> ConnectionManager:
    """Return the process ConnectionManager, creating it on first use."""
    global _MANAGER
    if _MANAGER is None:
        with _MANAGER_LOCK:
            if _MANAGER is None:
                _MANAGER = ConnectionManager(get_settings())
    return _MANAGER


# PUBLIC_INTERFACE
def init_db_pool() -> None:
    """Eagerly establish the pool. Raises ConnectionUnavailable if the database is unreachable."""
    with get_manager().acquire():
        pass


# PUBLIC_INTERFACE
def pool_state() -> PoolState:
    """Current pool state, without creating a manager or touching the database."""
    manager = _MANAGER
    return manager.state if manager is not None else PoolState.absent


# PUBLIC_INTERFACE
def close_db_pool() -> None:
    """Close the process pool if one was created."""
    if _MANAGER is not None:
        _MANAGER.close()


class Result(NamedTuple):
    rows: List[Dict[str, Any]]
    rowcount: int


def _dict_cursor(conn):
    return conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)


# PUBLIC_INTERFACE
def execute(statement: Any, params: Optional[Mapping[str, Any]] = None) -> Result:
    """
    Run one statement on a pooled connection and commit.

    Returns the fetched rows as dicts (empty when the statement produces no
    result set) and the driver rowcount. Driver errors propagate unchanged.
    """
    with get_manager().acquire() as conn:
        with _dict_cursor(conn) as cur:
            cur.execute(statement, params or None)
            rows = [dict(r) for r in cur.fetchall()] if cur.description else []
            rowcount = cur.rowcount
        conn.commit()
        return Result(rows, rowcount)
