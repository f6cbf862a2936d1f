"""MCP tool: batch_execute - Run independent named queries concurrently."""

from typing import Any, Dict, List, Optional

from dal.connection_state import ConnectionOverride
from mcp_server.utils.context import get_engine

TOOL_NAME = "batch_execute"
TOOL_DESCRIPTION = (
    "Run up to 20 independent named queries in parallel and return each result by name."
)


async def handler(
    queries: List[Dict[str, Any]],
    stop_on_error: bool = False,
    server: Optional[str] = None,
    database: Optional[str] = None,
    schema: Optional[str] = None,
) -> str:
    """Execute a batch of queries.

    Args:
        queries: Objects with a unique ``name``, ``sql`` and optional ``params``.
        stop_on_error: Omit results after the first failure (in input order).
        server: Target server for this call only.
        database: Target database for this call only.
        schema: Target schema for this call only.
    """
    result = await get_engine().batch_execute(
        queries,
        stop_on_error=stop_on_error,
        override=ConnectionOverride.from_args(server, database, schema),
    )
    return result.to_json()
