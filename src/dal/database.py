"""Connection pools, leasing and explicit transactions for configured PostgreSQL servers.

The session connection lives in one main pool; per-call overrides lease from
the bounded pool cache. Every lease counts against a global ceiling, and a lease
that cannot get a connection within the acquire timeout is refused instead of
queued.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

import asyncpg
from opentelemetry import trace

from common.config.env import get_env_str
from common.sql.statements import detect_statement_type
from dal.connection_budget import ConnectionBudget
from dal.connection_state import ConnectionOverride, ConnectionState, ConnectionTarget
from dal.errors import ConfigurationError, PoolExhaustedError, SchemaSwitchError
from dal.pool_cache import CachedPool, PoolCache
from dal.query_result import QueryResult, parse_status_command, parse_status_row_count
from dal.server_config import (
    DEFAULT_DATABASE,
    DEFAULT_SCHEMA,
    AccessMode,
    PoolSettings,
    ServerConfig,
    find_default_server,
    load_servers_config,
    parse_access_mode,
)
from dal.transactions import ActiveTransaction, TransactionRegistry, new_transaction_id
from dal.type_normalization import normalize_row
from dal.util.identifiers import quote_identifier, validate_database_name, validate_schema_name
from dal.util.read_only import enforce_read_only_sql

logger = logging.getLogger(__name__)

NO_CONNECTION_MESSAGE = "No database connection. Please switch to a server and database first."
NO_SERVER_MESSAGE = "No server selected. Please switch to a server first."
TRANSACTION_OVERRIDE_MESSAGE = (
    "Connection override (server/database/schema) cannot be used with transactions. "
    "Transactions are bound to the main connection."
)

_SYSTEM_DATABASES = ("template0", "template1")


class LeasedConnection:
    """A connection checked out of a pool, with its resolved target.

    ``release`` is idempotent and returns the connection to the pool it came from.
    """

    def __init__(
        self,
        connection: Any,
        target: ConnectionTarget,
        release: Callable[[], Awaitable[None]],
    ) -> None:
        """Wrap a leased connection and its release callback."""
        self.connection = connection
        self.target = target
        self._release = release
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        await self._release()

    async def __aenter__(self) -> "LeasedConnection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.release()


async def run_statement(
    conn: Any, sql: str, params: Optional[Sequence[Any]] = None
) -> QueryResult:
    """Execute one statement on ``conn`` and return rows, row count and field names."""
    span = trace.get_current_span()
    if span and span.is_recording():
        span.set_attribute("db.system", "postgresql")
        span.set_attribute("db.statement_type", detect_statement_type(sql))

    statement = await conn.prepare(sql)
    records = await statement.fetch(*(params or ()))
    status = statement.get_statusmsg()
    rows = [normalize_row(record) for record in records]
    return QueryResult(
        rows=rows,
        row_count=parse_status_row_count(status, fallback=len(rows)),
        fields=[attribute.name for attribute in statement.get_attributes()],
        command=parse_status_command(status),
    )


class ConnectionPoolManager:
    """Owns the main pool, the override pool cache and explicit transactions.

    The main pool is bound to the session's ``ConnectionState``. Calls that
    target another server or database lease from a bounded cache of pools, and
    every lease from either source counts against one global connection ceiling.
    """

    def __init__(
        self,
        servers: Mapping[str, ServerConfig],
        *,
        access_mode: AccessMode = AccessMode.FULL,
        settings: Optional[PoolSettings] = None,
        state: Optional[ConnectionState] = None,
    ) -> None:
        """Initialize the manager; no connection is opened until switch_server."""
        self._servers: Dict[str, ServerConfig] = dict(servers)
        self._access_mode = access_mode
        self._settings = settings or PoolSettings()
        self.state = state or ConnectionState()
        self._pool: Optional[asyncpg.Pool] = None
        self._budget = ConnectionBudget(self._settings.max_total_connections)
        self._pool_cache = PoolCache(
            capacity=self._settings.pool_cache_size,
            idle_timeout_seconds=self._settings.pool_idle_timeout_seconds,
        )
        self._transactions = TransactionRegistry()
        self._cleanup_task: Optional[asyncio.Task] = None

    @classmethod
    def from_env(cls) -> "ConnectionPoolManager":
        """Build a manager from ``POSTGRES_*`` environment variables."""
        return cls(
            load_servers_config(),
            access_mode=parse_access_mode(get_env_str("POSTGRES_ACCESS_MODE")),
            settings=PoolSettings.from_env(),
        )

    @property
    def servers(self) -> Dict[str, ServerConfig]:
        return dict(self._servers)

    @property
    def access_mode(self) -> AccessMode:
        return self._access_mode

    @property
    def is_read_only(self) -> bool:
        return self._access_mode is AccessMode.READONLY

    @property
    def settings(self) -> PoolSettings:
        return self._settings

    @property
    def budget(self) -> ConnectionBudget:
        return self._budget

    @property
    def pool_cache(self) -> PoolCache:
        return self._pool_cache

    @property
    def is_connected(self) -> bool:
        return self._pool is not None and self.state.is_set

    def default_server(self) -> Optional[str]:
        return find_default_server(self._servers)

    def get_server_config(self, name: str) -> ServerConfig:
        """Return the named server's configuration or raise ConfigurationError."""
        config = self._servers.get(name)
        if config is None:
            available = ", ".join(sorted(self._servers)) or "none"
            raise ConfigurationError(
                f"Server '{name}' not found in configuration. Available servers: {available}"
            )
        return config

    def ensure_read_only_allowed(self, sql: str) -> None:
        """Reject SQL the read-only policy does not allow."""
        enforce_read_only_sql(sql, self.is_read_only)

    def start(self) -> None:
        """Start the idle pool sweep and stale transaction cleanup loops."""
        self._pool_cache.start_sweeper(self._settings.pool_sweep_interval_seconds)
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(
                self._transaction_cleanup_loop()
            )

    async def _open_pool(self, config: ServerConfig, database: str, *, main: bool) -> asyncpg.Pool:
        """Create a pool for ``database`` on ``config`` and probe it once."""
        settings = self._settings
        pool = await asyncpg.create_pool(
            **config.connect_kwargs(database),
            min_size=1 if main else 0,
            max_size=settings.main_pool_max_size if main else settings.cached_pool_max_size,
            max_inactive_connection_lifetime=settings.inactive_connection_lifetime_seconds,
            timeout=settings.connect_timeout_seconds,
            server_settings={
                "application_name": settings.application_name,
                "statement_timeout": str(settings.query_timeout_ms),
            },
        )
        try:
            conn = await pool.acquire(timeout=settings.connect_timeout_seconds)
            await pool.release(conn)
        except Exception:
            logger.warning(
                "Connection probe failed for %s/%s", config.name, database, exc_info=True
            )
            await _close_quietly(pool, f"{config.name}:{database}")
            raise

        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_attribute("db.system", "postgresql")
            span.set_attribute("db.pool.key", f"{config.name}:{database}")
        logger.info(
            "Opened %s pool for %s:%s/%s",
            "main" if main else "cached",
            config.host,
            config.port,
            database,
        )
        return pool

    async def switch_server(
        self, server: str, database: Optional[str] = None, schema: Optional[str] = None
    ) -> ConnectionTarget:
        """Point the main pool at ``server``/``database``/``schema``.

        The new pool is opened and probed before anything else changes. If that
        fails the previous pool and ``ConnectionState`` are left untouched.
        """
        config = self.get_server_config(server)
        database = validate_database_name(database or config.default_database or DEFAULT_DATABASE)
        schema = validate_schema_name(schema or config.default_schema or DEFAULT_SCHEMA)

        try:
            new_pool = await self._open_pool(config, database, main=True)
        except Exception as exc:
            logger.error("Failed to connect to server '%s': %s", server, exc)
            raise ConnectionError(f"Failed to connect to server '{server}': {exc}") from exc

        old_pool = self._pool
        self._pool = new_pool
        await self._rollback_all_transactions("connection switch")
        self.state.update(server, database, schema)
        if old_pool is not None:
            await _close_quietly(old_pool, "previous main pool")

        logger.info("Switched to server '%s', database '%s', schema '%s'", server, database, schema)
        return ConnectionTarget(server=server, database=database, schema=schema)

    async def switch_database(
        self, database: str, schema: Optional[str] = None
    ) -> ConnectionTarget:
        """Switch database (and optionally schema) on the current server."""
        if not self.state.current_server:
            raise ConfigurationError(NO_SERVER_MESSAGE)
        return await self.switch_server(self.state.current_server, database, schema)

    async def reconnect(self) -> bool:
        """Rebuild the main pool for the remembered connection.

        Returns False when there is nothing to reconnect to or the new connection
        cannot be established; ``ConnectionState`` is kept either way.
        """
        server = self.state.current_server
        if not server:
            return False
        database = self.state.current_database
        schema = self.state.current_schema

        old_pool = self._pool
        self._pool = None
        await self._rollback_all_transactions("reconnect")
        if old_pool is not None:
            await _close_quietly(old_pool, "stale main pool")

        logger.info("Reconnecting to server '%s', database '%s'", server, database)
        try:
            await self.switch_server(server, database, schema)
        except Exception as exc:
            logger.error("Reconnect to server '%s' failed: %s", server, exc)
            return False
        return True

    async def close(self) -> None:
        """Roll back open transactions and close every pool."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None

        await self._rollback_all_transactions("shutdown")
        await self._pool_cache.close_all()
        if self._pool is not None:
            pool = self._pool
            self._pool = None
            await _close_quietly(pool, "main pool")
        self.state.clear()

    def resolve_target(self, override: Optional[ConnectionOverride] = None) -> ConnectionTarget:
        """Resolve the server, database and schema a call should run against.

        Each field comes from the override, then the session (only when the
        server is the session's), then the server's configured default, then the
        global default.
        """
        state = self.state
        server = (override.server if override else None) or state.current_server
        if not server:
            raise ConfigurationError(NO_CONNECTION_MESSAGE)
        config = self.get_server_config(server)
        same_server = server == state.current_server

        database = (
            (override.database if override else None)
            or (state.current_database if same_server else None)
            or config.default_database
            or DEFAULT_DATABASE
        )
        schema = (
            (override.schema if override else None)
            or (state.current_schema if same_server else None)
            or config.default_schema
            or DEFAULT_SCHEMA
        )
        return ConnectionTarget(
            server=server,
            database=validate_database_name(database),
            schema=validate_schema_name(schema),
        )

    def _uses_main_pool(self, target: ConnectionTarget) -> bool:
        return (
            target.server == self.state.current_server
            and target.database == self.state.current_database
        )

    async def get_client(self) -> LeasedConnection:
        """Lease a connection from the main pool."""
        return await self.get_client_with_override(None)

    async def get_client_with_override(
        self, override: Optional[ConnectionOverride] = None
    ) -> LeasedConnection:
        """Lease a connection for ``override``, falling back to the session connection.

        The returned connection already has the resolved schema applied.
        """
        target = self.resolve_target(override)
        if self._uses_main_pool(target):
            if self._pool is None:
                raise ConfigurationError(NO_CONNECTION_MESSAGE)
            return await self._lease(self._pool, target, None)

        config = self.get_server_config(target.server)
        entry = await self._pool_cache.get_or_create(
            target.pool_key,
            target.server,
            target.database,
            lambda: self._open_pool(config, target.database, main=False),
        )
        return await self._lease(entry.pool, target, entry)

    async def _lease(
        self, pool: Any, target: ConnectionTarget, entry: Optional[CachedPool]
    ) -> LeasedConnection:
        self._budget.acquire()
        try:
            conn = await pool.acquire(timeout=self._settings.pool_acquire_timeout_seconds)
        except asyncio.TimeoutError as exc:
            self._budget.release()
            pool_size = (
                self._settings.main_pool_max_size
                if entry is None
                else self._settings.cached_pool_max_size
            )
            logger.warning("Pool %s exhausted; lease refused", target.pool_key)
            raise PoolExhaustedError(pool_size, pool_size, pool_key=target.pool_key) from exc
        except BaseException:
            self._budget.release()
            raise
        if entry is not None:
            self._pool_cache.lease_started(entry)

        async def release() -> None:
            if entry is not None:
                self._pool_cache.lease_finished(entry)
            self._budget.release()
            await pool.release(conn)

        lease = LeasedConnection(conn, target, release)

        span = trace.get_current_span()
        if span and span.is_recording():
            span.set_attribute("db.pool.key", target.pool_key)

        try:
            await conn.execute(f"SET search_path TO {quote_identifier(target.schema)}")
        except Exception as exc:
            await lease.release()
            raise SchemaSwitchError(
                f"Failed to set schema '{target.schema}' on {target.pool_key}: {exc}"
            ) from exc
        return lease

    @asynccontextmanager
    async def connection(
        self,
        override: Optional[ConnectionOverride] = None,
        transaction_id: Optional[str] = None,
    ) -> AsyncIterator[LeasedConnection]:
        """Yield a leased connection, releasing it afterwards.

        With ``transaction_id`` the transaction's own connection is yielded and
        stays leased to the transaction.
        """
        if transaction_id:
            if override is not None and not override.is_empty:
                raise ValueError(TRANSACTION_OVERRIDE_MESSAGE)
            transaction = self._transactions.get(transaction_id)
            yield LeasedConnection(transaction.connection, self._transaction_target(transaction), _noop)
            return

        lease = await self.get_client_with_override(override)
        try:
            yield lease
        finally:
            await lease.release()

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """Run one statement on the main pool."""
        return await self.query_with_override(sql, params, None)

    async def query_with_override(
        self,
        sql: str,
        params: Optional[Sequence[Any]] = None,
        override: Optional[ConnectionOverride] = None,
    ) -> QueryResult:
        """Run one statement against the override target or the session connection."""
        self.ensure_read_only_allowed(sql)
        lease = await self.get_client_with_override(override)
        try:
            return await run_statement(lease.connection, sql, params)
        finally:
            await lease.release()

    async def list_databases(
        self, server: Optional[str] = None, include_system: bool = False
    ) -> List[Dict[str, Any]]:
        """List databases on ``server`` (default: the current server)."""
        override = ConnectionOverride.from_args(server=server)
        result = await self.query_with_override(
            """
            SELECT
                datname AS name,
                pg_catalog.pg_get_userbyid(datdba) AS owner,
                pg_catalog.pg_encoding_to_char(encoding) AS encoding,
                pg_catalog.pg_size_pretty(pg_catalog.pg_database_size(datname)) AS size
            FROM pg_catalog.pg_database
            WHERE datistemplate = false AND datallowconn
            ORDER BY datname
            """,
            None,
            override,
        )
        rows = result.rows
        if not include_system:
            rows = [row for row in rows if row["name"] not in _SYSTEM_DATABASES]
        return rows

    def _transaction_target(self, transaction: ActiveTransaction) -> ConnectionTarget:
        return ConnectionTarget(
            server=transaction.server, database=transaction.database, schema=transaction.schema
        )

    async def begin_transaction(self, name: Optional[str] = None) -> ActiveTransaction:
        """Open an explicit transaction on a dedicated main-pool connection."""
        lease = await self.get_client()
        try:
            await lease.connection.execute("BEGIN")
        except BaseException:
            await lease.release()
            raise

        transaction = ActiveTransaction(
            transaction_id=new_transaction_id(),
            lease=lease,
            server=lease.target.server,
            database=lease.target.database,
            schema=lease.target.schema,
            name=name,
        )
        self._transactions.add(transaction)
        logger.info(
            "Began transaction %s%s",
            transaction.transaction_id,
            f" ({name})" if name else "",
        )
        return transaction

    async def query_in_transaction(
        self, transaction_id: str, sql: str, params: Optional[Sequence[Any]] = None
    ) -> QueryResult:
        """Run one statement inside an open transaction."""
        self.ensure_read_only_allowed(sql)
        transaction = self._transactions.get(transaction_id)
        return await run_statement(transaction.connection, sql, params)

    async def commit_transaction(self, transaction_id: str) -> ActiveTransaction:
        """Commit and close a transaction; its connection is always released."""
        transaction = self._transactions.pop(transaction_id)
        try:
            await transaction.connection.execute("COMMIT")
        finally:
            await transaction.lease.release()
        logger.info("Committed transaction %s", transaction_id)
        return transaction

    async def rollback_transaction(self, transaction_id: str) -> ActiveTransaction:
        """Roll back and close a transaction; its connection is always released."""
        transaction = self._transactions.pop(transaction_id)
        try:
            await transaction.connection.execute("ROLLBACK")
        finally:
            await transaction.lease.release()
        logger.info("Rolled back transaction %s", transaction_id)
        return transaction

    def get_transaction_info(self, transaction_id: str) -> Dict[str, Any]:
        return self._transactions.get(transaction_id).as_dict()

    def list_active_transactions(self) -> List[Dict[str, Any]]:
        return [transaction.as_dict() for transaction in self._transactions.list()]

    async def cleanup_expired_transactions(self) -> int:
        """Roll back transactions older than the configured maximum age."""
        expired = self._transactions.expired(self._settings.transaction_max_age_seconds)
        for transaction in expired:
            self._transactions.pop(transaction.transaction_id)
            logger.warning(
                "Rolling back transaction %s after %.0fs without commit",
                transaction.transaction_id,
                transaction.age_seconds(),
            )
            await _rollback_and_release(transaction)
        return len(expired)

    async def _transaction_cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self._settings.transaction_cleanup_interval_seconds)
            try:
                await self.cleanup_expired_transactions()
            except Exception:
                logger.exception("Transaction cleanup failed")

    async def _rollback_all_transactions(self, reason: str) -> None:
        for transaction in self._transactions.drain():
            logger.info("Rolling back transaction %s (%s)", transaction.transaction_id, reason)
            await _rollback_and_release(transaction)

    def get_connection_info(self) -> Dict[str, Any]:
        """Describe the session connection."""
        state = self.state
        info: Dict[str, Any] = {
            "is_connected": self.is_connected,
            "server": state.current_server,
            "database": state.current_database,
            "schema": state.current_schema,
            "access_mode": self._access_mode.value,
        }
        if state.current_server and state.current_server in self._servers:
            context = self._servers[state.current_server].context
            if context:
                info["context"] = context
        return info

    def get_connection_context(self) -> Dict[str, Any]:
        """Return the session connection plus the free-text context of every server."""
        return {
            **self.state.as_context(),
            "access_mode": self._access_mode.value,
            "servers": {
                name: config.context for name, config in self._servers.items() if config.context
            },
        }

    def pool_stats(self) -> Dict[str, Any]:
        return {
            "active_connections": self._budget.active,
            "max_total_connections": self._budget.limit,
            "active_transactions": len(self._transactions),
            "pool_cache": self._pool_cache.stats(),
        }


async def _noop() -> None:
    return None


async def _rollback_and_release(transaction: ActiveTransaction) -> None:
    try:
        await transaction.connection.execute("ROLLBACK")
    except Exception as exc:
        logger.warning("Rollback of transaction %s failed: %s", transaction.transaction_id, exc)
    finally:
        await transaction.lease.release()


async def _close_quietly(pool: Any, label: str) -> None:
    try:
        await pool.close()
    except Exception as exc:
        logger.warning("Error closing %s: %s", label, exc)
        pool.terminate()
