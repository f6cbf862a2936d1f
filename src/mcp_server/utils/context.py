"""Process-wide access to the connection manager and execution engine.

The server lifespan installs a manager at startup; tool handlers resolve it
at call time so tests can install their own.
"""

from typing import Optional

from dal.database import ConnectionPoolManager
from dal.execution import SqlExecutionEngine

_manager: Optional[ConnectionPoolManager] = None
_engine: Optional[SqlExecutionEngine] = None


def set_manager(manager: Optional[ConnectionPoolManager]) -> None:
    """Install (or clear, with None) the manager used by tool handlers."""
    global _manager, _engine
    _manager = manager
    _engine = SqlExecutionEngine(manager) if manager is not None else None


def get_manager() -> ConnectionPoolManager:
    if _manager is None:
        raise RuntimeError("Connection manager is not initialized")
    return _manager


def get_engine() -> SqlExecutionEngine:
    if _engine is None:
        raise RuntimeError("Connection manager is not initialized")
    return _engine
