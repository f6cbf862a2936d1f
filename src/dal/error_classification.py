from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import asyncpg

from dal.errors import (
    ConfigurationError,
    PoolExhaustedError,
    ReadOnlyViolationError,
    SchemaSwitchError,
    TransactionNotFoundError,
)

logger = logging.getLogger(__name__)

CONNECTION_ERROR_FRAGMENTS = (
    "connection terminated",
    "connection refused",
    "econnreset",
    "econnrefused",
    "etimedout",
    "connection is closed",
    "connection was closed",
    "server closed the connection",
    "terminating connection",
    "could not connect",
    "the database system is shutting down",
    "the database system is starting up",
)

# Server shutdown / crash recovery codes outside SQLSTATE class 08.
CONNECTION_ERROR_CODES = {"57P01", "57P02", "57P03"}

_NOT_CONNECTION_FRAGMENTS = ("another operation is in progress",)


@dataclass(frozen=True)
class ErrorClassification:
    """Structured error classification used by the tool error envelope."""

    category: str
    code: str
    is_retryable: bool


def _sqlstate(exc: BaseException) -> Optional[str]:
    code = getattr(exc, "sqlstate", None)
    return code if isinstance(code, str) else None


def _matches_any(text: str, fragments: tuple[str, ...]) -> bool:
    return any(fragment in text for fragment in fragments)


def is_connection_error(exc: BaseException) -> bool:
    """Return True when ``exc`` means the connection itself is unusable.

    Pure predicate: it only inspects the exception type, SQLSTATE code and
    message, so it can drive reconnect-and-retry decisions.
    """
    message = str(exc).lower()
    if _matches_any(message, _NOT_CONNECTION_FRAGMENTS):
        return False
    if isinstance(exc, (ConnectionError, asyncpg.exceptions.ConnectionDoesNotExistError)):
        return True
    code = _sqlstate(exc)
    if code and (code.startswith("08") or code in CONNECTION_ERROR_CODES):
        return True
    return _matches_any(message, CONNECTION_ERROR_FRAGMENTS)


def classify_error(exc: BaseException) -> str:
    """Classify an error into a tool-facing category."""
    return classify_error_info(exc).category


def classify_error_info(exc: BaseException) -> ErrorClassification:
    """Classify an error into a category with retryability and a machine code."""
    code = _sqlstate(exc) or exc.__class__.__name__
    message = str(exc).lower()

    if isinstance(exc, ReadOnlyViolationError):
        return _classification("mutation_blocked", "READ_ONLY_VIOLATION")
    if isinstance(exc, PoolExhaustedError):
        return _classification("resource_exhausted", "CONNECTION_LIMIT_REACHED")
    if isinstance(exc, TransactionNotFoundError):
        return _classification("invalid_request", "TRANSACTION_NOT_FOUND")
    if isinstance(exc, ConfigurationError):
        return _classification("configuration", "CONFIGURATION_ERROR")
    if isinstance(exc, SchemaSwitchError):
        return _classification("invalid_request", "SCHEMA_SWITCH_FAILED")
    if isinstance(exc, (ValueError, TypeError)):
        return _classification("invalid_request", "INVALID_REQUEST")

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)) or code == "57014":
        return _classification("timeout", code)
    if is_connection_error(exc):
        return _classification("connectivity", code)
    if code.startswith("28") or code == "42501":
        return _classification("auth", code)
    if code == "40P01":
        return _classification("deadlock", code)
    if code == "40001":
        return _classification("serialization", code)
    if code.startswith("42"):
        return _classification("syntax", code)
    if code.startswith("53") or code.startswith("54"):
        return _classification("resource_exhausted", code)

    if _matches_any(message, ("timeout", "timed out", "canceling statement")):
        return _classification("timeout", code)
    if _matches_any(message, ("permission denied", "password authentication failed")):
        return _classification("auth", code)
    if _matches_any(message, ("syntax error",)):
        return _classification("syntax", code)
    return _classification("unknown", code)


RECOVERY_HINTS: dict[str, str] = {
    "timeout": "Consider reducing query complexity or adding a LIMIT clause",
    "connectivity": "Check network configuration and database availability",
    "auth": "Verify credentials and permission grants for the requested operation",
    "syntax": "Review SQL syntax; the query may reference invalid identifiers",
    "deadlock": "Retry the statement; consider ordering row locks consistently",
    "serialization": "Retry the transaction; reduce concurrent conflicting writes",
    "resource_exhausted": "Retry later or reduce the number of concurrent requests",
    "invalid_request": "Correct the request arguments and try again",
    "mutation_blocked": "The server is in read-only mode; only read queries are allowed",
    "configuration": "Use list_servers and switch_server_db to select a valid connection",
    "unknown": "Inspect error details for root cause",
}


def emit_classified_error(operation: str, exc: BaseException) -> ErrorClassification:
    """Record a classified error on the current span and in the log."""
    info = classify_error_info(exc)
    recovery_hint = RECOVERY_HINTS.get(info.category, RECOVERY_HINTS["unknown"])

    from opentelemetry import trace

    span = trace.get_current_span()
    if span and span.is_recording():
        span.set_attribute("error.classification.category", info.category)
        span.set_attribute("error.classification.code", info.code)
        span.set_attribute("error.classification.operation", operation)
        span.set_attribute("error.classification.is_retryable", info.is_retryable)

    logger.warning(
        "dal_error_classified",
        extra={
            "event": "dal_error_classified",
            "operation": operation,
            "error_category": info.category,
            "error_type": exc.__class__.__name__,
            "is_retryable": info.is_retryable,
            "recovery_hint": recovery_hint,
        },
    )
    return info


def _classification(category: str, code: str) -> ErrorClassification:
    retryable = category in {
        "timeout",
        "connectivity",
        "resource_exhausted",
        "serialization",
        "deadlock",
    }
    return ErrorClassification(category=category, code=code, is_retryable=retryable)
