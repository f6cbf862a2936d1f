"""SQL execution engine: single, multi-statement, file, dry-run and mutation operations."""

from dal.execution.engine import SqlExecutionEngine

__all__ = ["SqlExecutionEngine"]
