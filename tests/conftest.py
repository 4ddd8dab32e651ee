"""
Shared fixtures.

The environment is seeded before any application module is imported so the
settings loader always sees a complete configuration.
"""
import os

os.environ.update(
    {
        "DB_USER": "reports",
        "DB_PASSWORD": "reports-password",
        "DB_HOST": "db.test.local",
        "DB_NAME": "reports",
        "JWT_SECRET": "test-secret-key",
        "BCRYPT_ROUNDS": "4",
        "LOG_LEVEL": "DEBUG",
        "HOST": "127.0.0.1",
        "PORT": "4000",
    }
)

import psycopg2
import pytest
from psycopg2.pool import PoolError

from src.reports_api import config, db, tokens
from src.reports_api.db import PROBE_QUERY


@pytest.fixture(autouse=True)
def _reset_process_state():
    config.get_settings.cache_clear()
    tokens.get_token_service.cache_clear()
    tokens._pwd_context.cache_clear()
    db._MANAGER = None
    yield
    db._MANAGER = None
    config.get_settings.cache_clear()
    tokens.get_token_service.cache_clear()


# ============================================================================
# Fake driver objects
# ============================================================================

class FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self.rowcount = -1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, statement, params=None):
        pool = self.conn.pool
        if statement == PROBE_QUERY:
            pool.probes += 1
            if pool.fail_after is not None and pool.probes > pool.fail_after:
                raise psycopg2.OperationalError("server closed the connection unexpectedly")
            return
        pool.statements.append((statement, params))
        self.description = [("column",)] if pool.rows else None
        self.rowcount = pool.rowcount

    def fetchone(self):
        return (1,)

    def fetchall(self):
        return list(self.conn.pool.rows)


class FakeConnection:
    def __init__(self, pool):
        self.pool = pool
        self.commits = 0
        self.closed = False

    def cursor(self, **kwargs):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def close(self):
        self.closed = True


class FakePool:
    """Stand-in for ThreadedConnectionPool.

    Probes start failing once `fail_after` probes have succeeded.
    """

    def __init__(self, fail_after=None, rows=None, rowcount=0):
        self.fail_after = fail_after
        self.rows = rows or []
        self.rowcount = rowcount
        self.probes = 0
        self.statements = []
        self.borrowed = 0
        self.exhausted = False
        self.closed = False
        self.connections = []

    def getconn(self):
        if self.closed:
            raise PoolError("connection pool is closed")
        if self.exhausted:
            raise PoolError("connection pool exhausted")
        self.borrowed += 1
        conn = FakeConnection(self)
        self.connections.append(conn)
        return conn

    def putconn(self, conn, close=False):
        if self.closed:
            raise PoolError("connection pool is closed")
        self.borrowed -= 1
        if close:
            conn.close()

    def closeall(self):
        self.closed = True


class PoolFactory:
    """Returns the queued pools in order, then fresh healthy ones."""

    def __init__(self, *pools):
        self.queue = list(pools)
        self.built = []

    def __call__(self):
        pool = self.queue.pop(0) if self.queue else FakePool()
        if isinstance(pool, Exception):
            self.built.append(pool)
            raise pool
        self.built.append(pool)
        return pool


@pytest.fixture
def pool_factory():
    return PoolFactory()


@pytest.fixture
def manager(pool_factory):
    """A process manager backed by fake pools."""
    m = db.ConnectionManager(pool_factory=pool_factory)
    db._MANAGER = m
    return m
