"""MCP tool: explain_query - Show the execution plan of a query."""

from typing import Optional

from dal.connection_state import ConnectionOverride
from mcp_server.utils.context import get_engine
from mcp_server.utils.retry import connection_retry

TOOL_NAME = "explain_query"
TOOL_DESCRIPTION = (
    "Return the PostgreSQL execution plan for a query. ANALYZE actually runs the "
    "query and is only allowed for read-only SQL."
)


@connection_retry()
async def handler(
    sql: str,
    analyze: bool = False,
    buffers: bool = False,
    format: str = "json",
    server: Optional[str] = None,
    database: Optional[str] = None,
    schema: Optional[str] = None,
) -> str:
    """Explain a query.

    Args:
        sql: Statement to explain.
        analyze: Execute the statement and include actual timings.
        buffers: Include buffer usage (with analyze).
        format: One of json, text, yaml, xml.
        server: Target server for this call only.
        database: Target database for this call only.
        schema: Target schema for this call only.
    """
    result = await get_engine().explain_query(
        sql,
        analyze=analyze,
        buffers=buffers,
        output_format=format,
        override=ConnectionOverride.from_args(server, database, schema),
    )
    return result.to_json()
