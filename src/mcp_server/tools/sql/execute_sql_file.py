"""MCP tool: execute_sql_file - Execute a .sql file statement by statement."""

from typing import List, Optional

from dal.connection_state import ConnectionOverride
from mcp_server.utils.context import get_engine
from mcp_server.utils.retry import connection_retry

TOOL_NAME = "execute_sql_file"
TOOL_DESCRIPTION = (
    "Execute a .sql file, optionally inside one transaction, reporting executed and "
    "failed statements with their line numbers."
)


@connection_retry()
async def handler(
    file_path: str,
    use_transaction: bool = True,
    stop_on_error: bool = True,
    strip_patterns: Optional[List[str]] = None,
    strip_as_regex: bool = False,
    validate_only: bool = False,
    server: Optional[str] = None,
    database: Optional[str] = None,
    schema: Optional[str] = None,
) -> str:
    """Execute a SQL file.

    Failure Modes:
        - Invalid Request: Missing, empty, oversized or non-.sql file.
        - Statement errors are reported in the result, not raised.

    Args:
        file_path: Path of the .sql file (max 50MB).
        use_transaction: Wrap the file in BEGIN/COMMIT.
        stop_on_error: Stop (and roll back) at the first failing statement.
        strip_patterns: Lines or patterns removed before parsing (e.g. "GO").
        strip_as_regex: Treat strip_patterns as regular expressions.
        validate_only: Parse and preview without executing.
        server: Target server for this call only.
        database: Target database for this call only.
        schema: Target schema for this call only.
    """
    result = await get_engine().execute_sql_file(
        file_path,
        use_transaction=use_transaction,
        stop_on_error=stop_on_error,
        strip_patterns=strip_patterns,
        strip_as_regex=strip_as_regex,
        validate_only=validate_only,
        override=ConnectionOverride.from_args(server, database, schema),
    )
    return result.to_json()
