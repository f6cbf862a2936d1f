"""Unit test environment helpers and asyncpg fakes."""

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from dal.database import ConnectionPoolManager
from dal.server_config import AccessMode, PoolSettings, ServerConfig
from mcp_server.utils.context import set_manager


class FakeStatement:
    """Prepared statement double exposing the asyncpg calls run_statement uses."""

    def __init__(self, rows: List[Dict[str, Any]], status: str, fields: List[str]) -> None:
        self._rows = rows
        self._status = status
        self._fields = fields
        self.fetch_args: Optional[tuple] = None

    async def fetch(self, *args):
        self.fetch_args = args
        return self._rows

    def get_statusmsg(self) -> str:
        return self._status

    def get_attributes(self):
        return [SimpleNamespace(name=name) for name in self._fields]


class FakeConnection:
    """asyncpg connection double.

    Every SQL string passed to ``execute`` or ``prepare`` is recorded in
    ``executed``. Responses are matched by substring, first registered wins.
    """

    def __init__(self) -> None:
        self.executed: List[str] = []
        self.prepared: List[FakeStatement] = []
        self._responses: List[tuple] = []

    def respond(
        self,
        fragment: str,
        rows: Optional[List[Dict[str, Any]]] = None,
        status: Optional[str] = None,
        fields: Optional[List[str]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self._responses.append((fragment, rows or [], status, fields, error))

    def _match(self, sql: str):
        for response in self._responses:
            if response[0] in sql:
                return response
        return None

    async def execute(self, sql: str, *args):
        self.executed.append(sql)
        match = self._match(sql)
        if match is not None and match[4] is not None:
            raise match[4]
        return "OK"

    async def prepare(self, sql: str) -> FakeStatement:
        self.executed.append(sql)
        match = self._match(sql)
        if match is None:
            statement = FakeStatement([], "SELECT 0", [])
        else:
            _, rows, status, fields, error = match
            if error is not None:
                raise error
            statement = FakeStatement(
                rows,
                status or f"SELECT {len(rows)}",
                fields if fields is not None else (list(rows[0].keys()) if rows else []),
            )
        self.prepared.append(statement)
        return statement

    def statements_matching(self, fragment: str) -> List[str]:
        return [sql for sql in self.executed if fragment in sql]


class FakePool:
    """asyncpg pool double handing out one shared connection.

    With ``exhausted`` set, ``acquire`` waits like a full pool and times out.
    """

    def __init__(self, connection: FakeConnection, kwargs: Dict[str, Any]) -> None:
        self.connection = connection
        self.kwargs = kwargs
        self.acquired = 0
        self.released = 0
        self.closed = False
        self.exhausted = False
        self.acquire_timeouts: List[Optional[float]] = []

    async def acquire(self, *, timeout: Optional[float] = None):
        self.acquire_timeouts.append(timeout)
        if self.exhausted:
            await asyncio.wait_for(asyncio.Event().wait(), timeout)
        self.acquired += 1
        return self.connection

    async def release(self, conn) -> None:
        self.released += 1

    async def close(self) -> None:
        self.closed = True

    def terminate(self) -> None:
        self.closed = True


class FakePoolFactory:
    """Replacement for ``asyncpg.create_pool`` that records every pool it builds."""

    def __init__(self, connection: FakeConnection) -> None:
        self.default_connection = connection
        self.connections: Dict[str, FakeConnection] = {}
        self.failures: Dict[str, BaseException] = {}
        self.pools: List[FakePool] = []

    async def __call__(self, **kwargs) -> FakePool:
        database = kwargs.get("database")
        if database in self.failures:
            raise self.failures[database]
        pool = FakePool(self.connections.get(database, self.default_connection), kwargs)
        self.pools.append(pool)
        return pool

    def pools_for(self, database: str) -> List[FakePool]:
        return [pool for pool in self.pools if pool.kwargs.get("database") == database]


@pytest.fixture(autouse=True)
def _minimal_env(monkeypatch):
    """Keep host configuration out of unit tests."""
    for name in (
        "POSTGRES_SERVERS",
        "POSTGRES_ACCESS_MODE",
        "POSTGRES_QUERY_TIMEOUT_MS",
        "POSTGRES_MAX_TOTAL_CONNECTIONS",
        "POSTGRES_POOL_CACHE_SIZE",
        "POSTGRES_POOL_IDLE_TIMEOUT_SECONDS",
        "POSTGRES_POOL_SWEEP_INTERVAL_SECONDS",
        "POSTGRES_POOL_ACQUIRE_TIMEOUT_SECONDS",
        "POSTGRES_APPLICATION_NAME",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def _reset_server_context():
    """Clear the process-wide connection manager after each test."""
    yield
    set_manager(None)


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def pool_factory(monkeypatch, fake_connection) -> FakePoolFactory:
    """Patch asyncpg.create_pool so every pool leases ``fake_connection``."""
    factory = FakePoolFactory(fake_connection)
    monkeypatch.setattr("dal.database.asyncpg.create_pool", factory)
    return factory


@pytest.fixture
def servers() -> Dict[str, ServerConfig]:
    return {
        "main": ServerConfig(
            name="main",
            host="localhost",
            username="app",
            password="secret",
            default_database="app",
            is_default=True,
            context="Primary OLTP database",
        ),
        "replica": ServerConfig(
            name="replica",
            host="replica.internal.example.com",
            port=5433,
            username="reader",
            default_database="analytics",
            default_schema="reporting",
        ),
    }


@pytest.fixture
def make_manager(servers, pool_factory):
    """Build managers over the fake pool factory."""

    def _make(read_only: bool = False, **settings) -> ConnectionPoolManager:
        return ConnectionPoolManager(
            servers,
            access_mode=AccessMode.READONLY if read_only else AccessMode.FULL,
            settings=PoolSettings(**settings),
        )

    return _make
