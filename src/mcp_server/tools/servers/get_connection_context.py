"""MCP tool: get_connection_context - Session connection plus per-server context notes."""

import json

from mcp_server.utils.context import get_manager

TOOL_NAME = "get_connection_context"
TOOL_DESCRIPTION = (
    "Show the current connection together with the free-text context configured for "
    "each server (what it holds, naming conventions, cautions)."
)


async def handler() -> str:
    return json.dumps(get_manager().get_connection_context())
