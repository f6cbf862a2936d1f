"""Unit tests for ConnectionPoolManager."""

import asyncio
import json

import pytest

from dal.connection_state import ConnectionOverride
from dal.database import (
    NO_CONNECTION_MESSAGE,
    TRANSACTION_OVERRIDE_MESSAGE,
    ConnectionPoolManager,
)
from dal.errors import (
    ConfigurationError,
    PoolExhaustedError,
    ReadOnlyViolationError,
    SchemaSwitchError,
    TransactionNotFoundError,
)
from dal.server_config import AccessMode


class TestSwitchServer:
    @pytest.mark.asyncio
    async def test_opens_and_probes_main_pool(self, make_manager, pool_factory):
        manager = make_manager()
        target = await manager.switch_server("main")

        assert target.as_dict() == {"server": "main", "database": "app", "schema": "public"}
        assert manager.is_connected
        pool = pool_factory.pools[0]
        assert pool.acquired == 1 and pool.released == 1
        assert pool.kwargs["host"] == "localhost"
        assert pool.kwargs["min_size"] == 1
        assert pool.kwargs["server_settings"] == {
            "application_name": "postgres_mcp",
            "statement_timeout": "30000",
        }

    @pytest.mark.asyncio
    async def test_unknown_server(self, make_manager):
        manager = make_manager()
        with pytest.raises(ConfigurationError, match="Available servers: main, replica"):
            await manager.switch_server("nope")

    @pytest.mark.asyncio
    async def test_invalid_database_name_is_rejected_before_connecting(
        self, make_manager, pool_factory
    ):
        manager = make_manager()
        with pytest.raises(ValueError):
            await manager.switch_server("main", "app; DROP DATABASE x")
        assert pool_factory.pools == []

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_connection(self, make_manager, pool_factory):
        manager = make_manager()
        await manager.switch_server("main")
        pool_factory.failures["analytics"] = OSError("connection refused")

        with pytest.raises(ConnectionError, match="Failed to connect to server 'replica'"):
            await manager.switch_server("replica")

        assert manager.state.as_context() == {
            "server": "main",
            "database": "app",
            "schema": "public",
        }
        assert manager.is_connected
        assert not pool_factory.pools[0].closed

    @pytest.mark.asyncio
    async def test_success_closes_previous_pool(self, make_manager, pool_factory):
        manager = make_manager()
        await manager.switch_server("main")
        await manager.switch_server("replica", schema="staging")

        assert pool_factory.pools[0].closed
        assert manager.state.as_context() == {
            "server": "replica",
            "database": "analytics",
            "schema": "staging",
        }

    @pytest.mark.asyncio
    async def test_switch_database_requires_server(self, make_manager):
        manager = make_manager()
        with pytest.raises(ConfigurationError, match="No server selected"):
            await manager.switch_database("app")

    @pytest.mark.asyncio
    async def test_switch_database_keeps_server(self, make_manager):
        manager = make_manager()
        await manager.switch_server("main")
        target = await manager.switch_database("reports", "sales")
        assert (target.server, target.database, target.schema) == ("main", "reports", "sales")


class TestResolveTarget:
    def test_requires_a_connection(self, make_manager):
        with pytest.raises(ConfigurationError, match=NO_CONNECTION_MESSAGE):
            make_manager().resolve_target()

    @pytest.mark.asyncio
    async def test_other_server_uses_its_defaults(self, make_manager):
        manager = make_manager()
        await manager.switch_server("main", schema="sales")
        target = manager.resolve_target(ConnectionOverride(server="replica"))
        assert target.as_dict() == {
            "server": "replica",
            "database": "analytics",
            "schema": "reporting",
        }

    @pytest.mark.asyncio
    async def test_same_server_inherits_session_schema(self, make_manager):
        manager = make_manager()
        await manager.switch_server("main", schema="sales")
        target = manager.resolve_target(ConnectionOverride(database="reports"))
        assert target.as_dict() == {"server": "main", "database": "reports", "schema": "sales"}

    @pytest.mark.asyncio
    async def test_override_values_are_validated(self, make_manager):
        manager = make_manager()
        await manager.switch_server("main")
        with pytest.raises(ValueError):
            manager.resolve_target(ConnectionOverride(schema="bad-schema"))


class TestLeasing:
    @pytest.mark.asyncio
    async def test_main_pool_lease_sets_schema(self, make_manager, fake_connection):
        manager = make_manager()
        await manager.switch_server("main", schema="sales")

        lease = await manager.get_client()
        assert manager.budget.active == 1
        assert fake_connection.executed[-1] == 'SET search_path TO "sales"'
        await lease.release()
        await lease.release()
        assert manager.budget.active == 0

    @pytest.mark.asyncio
    async def test_override_uses_cached_pool(self, make_manager, pool_factory):
        manager = make_manager()
        await manager.switch_server("main")
        override = ConnectionOverride(server="replica")

        async with manager.connection(override) as lease:
            assert lease.target.pool_key == "replica:analytics"
        async with manager.connection(override):
            pass

        replica_pools = pool_factory.pools_for("analytics")
        assert len(replica_pools) == 1
        assert replica_pools[0].kwargs["min_size"] == 0
        assert manager.pool_cache.keys() == ["replica:analytics"]
        assert manager.state.current_server == "main"

    @pytest.mark.asyncio
    async def test_global_ceiling(self, make_manager):
        manager = make_manager(max_total_connections=1)
        await manager.switch_server("main")

        held = await manager.get_client()
        with pytest.raises(PoolExhaustedError):
            await manager.get_client_with_override(ConnectionOverride(server="replica"))
        await held.release()

        async with manager.connection(ConnectionOverride(server="replica")):
            assert manager.budget.active == 1

    @pytest.mark.asyncio
    async def test_full_main_pool_refuses_instead_of_waiting(self, make_manager, pool_factory):
        manager = make_manager(pool_acquire_timeout_seconds=0.01)
        await manager.switch_server("main")
        main_pool = pool_factory.pools_for("app")[0]
        main_pool.exhausted = True

        with pytest.raises(PoolExhaustedError, match="Connection pool 'main:app' is exhausted"):
            await asyncio.wait_for(manager.get_client(), 2)

        assert main_pool.acquire_timeouts[-1] == 0.01
        assert manager.budget.active == 0

    @pytest.mark.asyncio
    async def test_full_cached_pool_refuses_instead_of_waiting(self, make_manager, pool_factory):
        manager = make_manager(pool_acquire_timeout_seconds=0.01)
        await manager.switch_server("main")
        override = ConnectionOverride(server="replica")
        async with manager.connection(override):
            pass
        pool_factory.pools_for("analytics")[0].exhausted = True

        with pytest.raises(PoolExhaustedError) as exc_info:
            await asyncio.wait_for(manager.get_client_with_override(override), 2)

        assert exc_info.value.pool_key == "replica:analytics"
        assert exc_info.value.limit == manager.settings.cached_pool_max_size
        assert manager.budget.active == 0

    @pytest.mark.asyncio
    async def test_opening_pool_waits_at_most_connect_timeout(self, make_manager, pool_factory):
        manager = make_manager(connect_timeout_seconds=3.0)
        await manager.switch_server("main")

        assert pool_factory.pools_for("app")[0].acquire_timeouts[0] == 3.0

    @pytest.mark.asyncio
    async def test_schema_failure_releases_connection(self, make_manager, fake_connection):
        manager = make_manager()
        await manager.switch_server("main")
        fake_connection.respond("SET search_path", error=Exception('schema "x" does not exist'))

        with pytest.raises(SchemaSwitchError, match="Failed to set schema 'public'"):
            await manager.get_client()
        assert manager.budget.active == 0

    @pytest.mark.asyncio
    async def test_not_connected(self, make_manager):
        manager = make_manager()
        with pytest.raises(ConfigurationError):
            await manager.get_client()


class TestQueries:
    @pytest.mark.asyncio
    async def test_query_returns_rows_and_passes_params(self, make_manager, fake_connection):
        manager = make_manager()
        await manager.switch_server("main")
        fake_connection.respond("FROM users", rows=[{"id": 1, "name": "a"}])

        result = await manager.query("SELECT * FROM users WHERE id = $1", [1])

        assert result.rows == [{"id": 1, "name": "a"}]
        assert result.row_count == 1
        assert result.fields == ["id", "name"]
        assert fake_connection.prepared[-1].fetch_args == (1,)
        assert manager.budget.active == 0

    @pytest.mark.asyncio
    async def test_read_only_mode_blocks_before_leasing(self, make_manager, fake_connection):
        manager = make_manager(read_only=True)
        await manager.switch_server("main")
        executed_before = len(fake_connection.executed)

        with pytest.raises(ReadOnlyViolationError):
            await manager.query_with_override("DELETE FROM users", None, None)
        assert len(fake_connection.executed) == executed_before

    @pytest.mark.asyncio
    async def test_list_databases_hides_templates(self, make_manager, fake_connection):
        manager = make_manager()
        await manager.switch_server("main")
        fake_connection.respond(
            "pg_database",
            rows=[{"name": "app"}, {"name": "template1"}, {"name": "template0"}],
        )

        assert [db["name"] for db in await manager.list_databases()] == ["app"]
        assert len(await manager.list_databases(include_system=True)) == 3


class TestTransactions:
    @pytest.mark.asyncio
    async def test_begin_query_commit(self, make_manager, fake_connection):
        manager = make_manager()
        await manager.switch_server("main")

        transaction = await manager.begin_transaction("load")
        assert "BEGIN" in fake_connection.executed
        assert manager.budget.active == 1
        assert manager.list_active_transactions()[0]["name"] == "load"

        await manager.query_in_transaction(transaction.transaction_id, "INSERT INTO t VALUES (1)")
        await manager.commit_transaction(transaction.transaction_id)

        assert fake_connection.executed[-1] == "COMMIT"
        assert manager.budget.active == 0
        assert manager.list_active_transactions() == []

    @pytest.mark.asyncio
    async def test_rollback(self, make_manager, fake_connection):
        manager = make_manager()
        await manager.switch_server("main")
        transaction = await manager.begin_transaction()

        await manager.rollback_transaction(transaction.transaction_id)

        assert fake_connection.executed[-1] == "ROLLBACK"
        with pytest.raises(TransactionNotFoundError):
            manager.get_transaction_info(transaction.transaction_id)

    @pytest.mark.asyncio
    async def test_commit_failure_still_releases(self, make_manager, fake_connection):
        manager = make_manager()
        await manager.switch_server("main")
        transaction = await manager.begin_transaction()
        fake_connection.respond("COMMIT", error=Exception("could not serialize access"))

        with pytest.raises(Exception, match="could not serialize access"):
            await manager.commit_transaction(transaction.transaction_id)
        assert manager.budget.active == 0

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, make_manager):
        manager = make_manager()
        with pytest.raises(TransactionNotFoundError):
            await manager.commit_transaction("missing")

    @pytest.mark.asyncio
    async def test_override_cannot_join_transaction(self, make_manager):
        manager = make_manager()
        await manager.switch_server("main")
        transaction = await manager.begin_transaction()

        with pytest.raises(ValueError, match="cannot be used with transactions"):
            async with manager.connection(
                ConnectionOverride(database="other"), transaction.transaction_id
            ):
                pass
        assert TRANSACTION_OVERRIDE_MESSAGE.startswith("Connection override")

    @pytest.mark.asyncio
    async def test_transaction_connection_stays_leased(self, make_manager):
        manager = make_manager()
        await manager.switch_server("main")
        transaction = await manager.begin_transaction()

        async with manager.connection(None, transaction.transaction_id) as lease:
            assert lease.connection is transaction.connection
        assert manager.budget.active == 1

    @pytest.mark.asyncio
    async def test_switch_rolls_back_open_transactions(self, make_manager, fake_connection):
        manager = make_manager()
        await manager.switch_server("main")
        await manager.begin_transaction()

        await manager.switch_server("replica")

        assert "ROLLBACK" in fake_connection.executed
        assert manager.list_active_transactions() == []
        assert manager.budget.active == 0

    @pytest.mark.asyncio
    async def test_expired_transactions_are_rolled_back(self, make_manager, fake_connection):
        manager = make_manager()
        await manager.switch_server("main")
        stale = await manager.begin_transaction()
        fresh = await manager.begin_transaction()
        stale.started_monotonic -= manager.settings.transaction_max_age_seconds + 1

        assert await manager.cleanup_expired_transactions() == 1
        assert [t["transaction_id"] for t in manager.list_active_transactions()] == [
            fresh.transaction_id
        ]


class TestReconnectAndClose:
    @pytest.mark.asyncio
    async def test_reconnect_without_connection(self, make_manager):
        assert await make_manager().reconnect() is False

    @pytest.mark.asyncio
    async def test_reconnect_rebuilds_main_pool(self, make_manager, pool_factory):
        manager = make_manager()
        await manager.switch_server("main", schema="sales")

        assert await manager.reconnect() is True
        assert pool_factory.pools[0].closed
        assert len(pool_factory.pools) == 2
        assert manager.state.current_schema == "sales"

    @pytest.mark.asyncio
    async def test_reconnect_failure_keeps_state(self, make_manager, pool_factory):
        manager = make_manager()
        await manager.switch_server("main")
        pool_factory.failures["app"] = OSError("connection refused")

        assert await manager.reconnect() is False
        assert manager.state.current_server == "main"
        assert not manager.is_connected

    @pytest.mark.asyncio
    async def test_close_releases_everything(self, make_manager, pool_factory):
        manager = make_manager()
        manager.start()
        await manager.switch_server("main")
        async with manager.connection(ConnectionOverride(server="replica")):
            pass

        await manager.close()

        assert all(pool.closed for pool in pool_factory.pools)
        assert manager.state.current_server is None
        assert len(manager.pool_cache) == 0


class TestIntrospection:
    @pytest.mark.asyncio
    async def test_connection_info(self, make_manager):
        manager = make_manager(read_only=True)
        await manager.switch_server("main")

        info = manager.get_connection_info()
        assert info == {
            "is_connected": True,
            "server": "main",
            "database": "app",
            "schema": "public",
            "access_mode": "readonly",
            "context": "Primary OLTP database",
        }

    def test_connection_context(self, make_manager):
        context = make_manager().get_connection_context()
        assert context["server"] is None
        assert context["servers"] == {"main": "Primary OLTP database"}

    def test_pool_stats(self, make_manager):
        stats = make_manager(max_total_connections=7).pool_stats()
        assert stats["max_total_connections"] == 7
        assert stats["active_connections"] == 0


def test_from_env(monkeypatch):
    monkeypatch.setenv("POSTGRES_SERVERS", json.dumps({"local": {"host": "localhost"}}))
    monkeypatch.setenv("POSTGRES_ACCESS_MODE", "readonly")
    monkeypatch.setenv("POSTGRES_MAX_TOTAL_CONNECTIONS", "12")

    manager = ConnectionPoolManager.from_env()

    assert list(manager.servers) == ["local"]
    assert manager.access_mode is AccessMode.READONLY
    assert manager.is_read_only
    assert manager.budget.limit == 12
    assert manager.default_server() == "local"
