"""Unit tests for DAL error classification."""

import asyncio
import logging

import asyncpg
import pytest

from dal.error_classification import (
    classify_error,
    classify_error_info,
    emit_classified_error,
    is_connection_error,
)
from dal.errors import (
    ConfigurationError,
    PoolExhaustedError,
    ReadOnlyViolationError,
    SchemaSwitchError,
    TransactionNotFoundError,
)


class _SqlStateError(Exception):
    def __init__(self, message: str, sqlstate: str) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


class TestIsConnectionError:
    @pytest.mark.parametrize(
        "exc",
        [
            ConnectionResetError("reset by peer"),
            ConnectionRefusedError("refused"),
            asyncpg.exceptions.ConnectionDoesNotExistError("connection was closed"),
            _SqlStateError("connection failure", "08006"),
            _SqlStateError("terminating connection due to administrator command", "57P01"),
            Exception("Connection terminated unexpectedly"),
            Exception("connect ECONNREFUSED 127.0.0.1:5432"),
            Exception("server closed the connection unexpectedly"),
        ],
    )
    def test_connection_errors(self, exc):
        assert is_connection_error(exc)

    @pytest.mark.parametrize(
        "exc",
        [
            Exception('syntax error at or near "FROM"'),
            _SqlStateError("duplicate key value", "23505"),
            OSError("disk full"),
            ValueError("bad argument"),
            Exception("cannot perform operation: another operation is in progress"),
        ],
    )
    def test_other_errors(self, exc):
        assert not is_connection_error(exc)


class TestClassifyErrorInfo:
    @pytest.mark.parametrize(
        "exc, category, code",
        [
            (ReadOnlyViolationError("Write operation 'DROP' detected"), "mutation_blocked", "READ_ONLY_VIOLATION"),
            (PoolExhaustedError(5, 5), "resource_exhausted", "CONNECTION_LIMIT_REACHED"),
            (TransactionNotFoundError("t1"), "invalid_request", "TRANSACTION_NOT_FOUND"),
            (ConfigurationError("No server"), "configuration", "CONFIGURATION_ERROR"),
            (SchemaSwitchError("bad schema"), "invalid_request", "SCHEMA_SWITCH_FAILED"),
            (ValueError("sql parameter cannot be empty"), "invalid_request", "INVALID_REQUEST"),
            (_SqlStateError("canceling statement due to statement timeout", "57014"), "timeout", "57014"),
            (_SqlStateError("password authentication failed", "28P01"), "auth", "28P01"),
            (_SqlStateError("permission denied for table t", "42501"), "auth", "42501"),
            (_SqlStateError("deadlock detected", "40P01"), "deadlock", "40P01"),
            (_SqlStateError("could not serialize access", "40001"), "serialization", "40001"),
            (_SqlStateError('relation "nope" does not exist', "42P01"), "syntax", "42P01"),
            (_SqlStateError("out of memory", "53200"), "resource_exhausted", "53200"),
            (_SqlStateError("duplicate key value", "23505"), "unknown", "23505"),
        ],
    )
    def test_categories(self, exc, category, code):
        info = classify_error_info(exc)
        assert info.category == category
        assert info.code == code

    def test_timeouts(self):
        assert classify_error(asyncio.TimeoutError()) == "timeout"

    def test_connectivity_is_retryable(self):
        info = classify_error_info(ConnectionResetError("reset"))
        assert info.category == "connectivity"
        assert info.is_retryable is True

    def test_syntax_is_not_retryable(self):
        info = classify_error_info(Exception("syntax error at end of input"))
        assert info.category == "syntax"
        assert info.is_retryable is False
        assert info.code == "Exception"


def test_emit_classified_error_logs_structured_record(caplog):
    """Classified errors are logged with structured fields."""
    with caplog.at_level(logging.WARNING):
        info = emit_classified_error("execute_sql", _SqlStateError("deadlock detected", "40P01"))

    assert info.category == "deadlock"
    record = next(r for r in caplog.records if r.message == "dal_error_classified")
    assert record.operation == "execute_sql"
    assert record.error_category == "deadlock"
    assert record.is_retryable is True
    assert record.recovery_hint.startswith("Retry the statement")
