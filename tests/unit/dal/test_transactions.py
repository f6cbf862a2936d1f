"""Unit tests for the transaction registry and connection identity types."""

from unittest.mock import MagicMock

import pytest

from dal.connection_state import ConnectionOverride, ConnectionState, ConnectionTarget
from dal.errors import TransactionNotFoundError
from dal.transactions import ActiveTransaction, TransactionRegistry, new_transaction_id


def _transaction(transaction_id: str, started: float, name=None) -> ActiveTransaction:
    return ActiveTransaction(
        transaction_id=transaction_id,
        lease=MagicMock(),
        server="main",
        database="app",
        schema="public",
        name=name,
        started_monotonic=started,
    )


class TestTransactionRegistry:
    def test_get_unknown_raises(self):
        registry = TransactionRegistry()
        with pytest.raises(TransactionNotFoundError, match="Transaction not found: nope"):
            registry.get("nope")

    def test_pop_removes(self):
        registry = TransactionRegistry()
        registry.add(_transaction("t1", 0))

        assert registry.pop("t1").transaction_id == "t1"
        assert len(registry) == 0
        with pytest.raises(TransactionNotFoundError):
            registry.pop("t1")

    def test_list_is_ordered_by_start(self):
        registry = TransactionRegistry()
        registry.add(_transaction("late", 20))
        registry.add(_transaction("early", 10))
        assert [t.transaction_id for t in registry.list()] == ["early", "late"]

    def test_expired(self):
        registry = TransactionRegistry()
        registry.add(_transaction("old", 0))
        registry.add(_transaction("new", 100))
        assert [t.transaction_id for t in registry.expired(50, now=120)] == ["old"]

    def test_drain_empties_registry(self):
        registry = TransactionRegistry()
        registry.add(_transaction("a", 0))
        registry.add(_transaction("b", 1))

        assert len(registry.drain()) == 2
        assert len(registry) == 0

    def test_as_dict_includes_name_only_when_set(self):
        info = _transaction("t1", 0, name="migration").as_dict()
        assert info["name"] == "migration"
        assert info["server"] == "main"
        assert "started_at" in info
        assert "name" not in _transaction("t2", 0).as_dict()

    def test_ids_are_unique(self):
        assert new_transaction_id() != new_transaction_id()


class TestConnectionIdentity:
    def test_override_from_empty_args_is_none(self):
        assert ConnectionOverride.from_args() is None
        assert ConnectionOverride.from_args("", "", "") is None

    def test_override_keeps_given_fields(self):
        override = ConnectionOverride.from_args(database="analytics")
        assert override == ConnectionOverride(server=None, database="analytics", schema=None)
        assert not override.is_empty

    def test_state_lifecycle(self):
        state = ConnectionState()
        assert not state.is_set
        state.update("main", "app", "public")
        assert state.is_set
        assert state.as_context() == {"server": "main", "database": "app", "schema": "public"}
        state.clear()
        assert state.as_context() == {"server": None, "database": None, "schema": None}

    def test_target_pool_key(self):
        target = ConnectionTarget(server="main", database="app", schema="sales")
        assert target.pool_key == "main:app"
        assert target.as_dict() == {"server": "main", "database": "app", "schema": "sales"}
