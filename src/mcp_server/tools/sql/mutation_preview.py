"""MCP tool: mutation_preview - Estimate what an INSERT/UPDATE/DELETE would touch."""

from typing import Optional

from dal.connection_state import ConnectionOverride
from mcp_server.utils.context import get_engine

TOOL_NAME = "mutation_preview"
TOOL_DESCRIPTION = (
    "Preview an INSERT, UPDATE or DELETE without executing it: estimated row count "
    "from EXPLAIN and a sample of the rows that match its WHERE clause."
)


async def handler(
    sql: str,
    sample_size: Optional[int] = None,
    server: Optional[str] = None,
    database: Optional[str] = None,
    schema: Optional[str] = None,
) -> str:
    """Preview a mutation.

    Args:
        sql: A single INSERT, UPDATE or DELETE statement.
        sample_size: Sample rows to return (default 5, max 20).
        server: Target server for this call only.
        database: Target database for this call only.
        schema: Target schema for this call only.
    """
    result = await get_engine().mutation_preview(
        sql,
        sample_size=sample_size,
        override=ConnectionOverride.from_args(server, database, schema),
    )
    return result.to_json()
