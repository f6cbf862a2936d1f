"""Data access layer: connection pools, transactions and SQL execution for PostgreSQL servers."""

from dal.connection_state import ConnectionOverride, ConnectionState, ConnectionTarget
from dal.database import ConnectionPoolManager

__all__ = [
    "ConnectionOverride",
    "ConnectionPoolManager",
    "ConnectionState",
    "ConnectionTarget",
]
