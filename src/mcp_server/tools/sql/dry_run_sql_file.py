"""MCP tool: dry_run_sql_file - Execute a .sql file and roll everything back."""

from typing import List, Optional

from dal.connection_state import ConnectionOverride
from mcp_server.utils.context import get_engine

TOOL_NAME = "dry_run_sql_file"
TOOL_DESCRIPTION = (
    "Execute a .sql file inside a transaction that is always rolled back, reporting "
    "per-statement results, PostgreSQL error details and statements that were skipped "
    "because their effects cannot be rolled back."
)


async def handler(
    file_path: str,
    strip_patterns: Optional[List[str]] = None,
    strip_as_regex: bool = False,
    max_statements: Optional[int] = None,
    stop_on_error: bool = False,
    server: Optional[str] = None,
    database: Optional[str] = None,
    schema: Optional[str] = None,
) -> str:
    """Dry-run a SQL file.

    Data Access:
        Statements really execute, so locks are taken and triggers fire, but the
        transaction is rolled back. VACUUM, CREATE INDEX CONCURRENTLY, sequence
        calls and similar statements are skipped.

    Args:
        file_path: Path of the .sql file.
        strip_patterns: Lines or patterns removed before parsing.
        strip_as_regex: Treat strip_patterns as regular expressions.
        max_statements: Statement results to return (default 50, max 200).
        stop_on_error: Stop at the first failing statement.
        server: Target server for this call only.
        database: Target database for this call only.
        schema: Target schema for this call only.
    """
    result = await get_engine().dry_run_sql_file(
        file_path,
        strip_patterns=strip_patterns,
        strip_as_regex=strip_as_regex,
        max_statements=max_statements,
        stop_on_error=stop_on_error,
        override=ConnectionOverride.from_args(server, database, schema),
    )
    return result.to_json()
