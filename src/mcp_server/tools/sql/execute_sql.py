"""MCP tool: execute_sql - Execute SQL on the session or an override connection."""

from typing import Any, List, Optional

from dal.connection_state import ConnectionOverride
from mcp_server.utils.context import get_engine
from mcp_server.utils.retry import connection_retry

TOOL_NAME = "execute_sql"
TOOL_DESCRIPTION = (
    "Execute SQL and return a page of rows. Supports positional $1..$n parameters, "
    "multi-statement scripts, explicit transactions and per-call server/database/schema."
)


@connection_retry()
async def handler(
    sql: str,
    params: Optional[List[Any]] = None,
    max_rows: Optional[int] = None,
    offset: Optional[int] = None,
    allow_large_script: bool = False,
    include_schema_hint: bool = False,
    allow_multiple_statements: bool = False,
    transaction_id: Optional[str] = None,
    server: Optional[str] = None,
    database: Optional[str] = None,
    schema: Optional[str] = None,
) -> str:
    """Execute SQL against the database.

    Data Access:
        Runs the statement as given. In read-only access mode anything the
        read-only validator rejects fails before reaching the server.

    Failure Modes:
        - Invalid Request: Empty SQL, too many parameters or bad paging values.
        - Mutation Blocked: Write SQL while the server runs read-only.
        - Connectivity: The connection died and one reconnect did not help.

    Args:
        sql: SQL text; a single statement unless allow_multiple_statements is set.
        params: Positional parameters for $1..$n placeholders.
        max_rows: Page size (1-100000, default 1000).
        offset: Rows to skip before the page.
        allow_large_script: Accept SQL above the 100000 character limit.
        include_schema_hint: Attach column and key information for referenced tables.
        allow_multiple_statements: Run every statement and report each one.
        transaction_id: Run inside a transaction opened with begin_transaction.
        server: Target server for this call only.
        database: Target database for this call only.
        schema: Target schema for this call only.

    Returns:
        JSON with rows, row_count, fields, paging flags and execution time; large
        pages are written to output_file instead of being returned inline.
    """
    result = await get_engine().execute_sql(
        sql,
        params,
        max_rows=max_rows,
        offset=offset,
        allow_large_script=allow_large_script,
        include_schema_hint=include_schema_hint,
        allow_multiple_statements=allow_multiple_statements,
        transaction_id=transaction_id,
        override=ConnectionOverride.from_args(server, database, schema),
    )
    return result.to_json()
