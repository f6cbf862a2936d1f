"""MCP tool: get_current_connection - Describe the session connection."""

import json

from mcp_server.utils.context import get_manager

TOOL_NAME = "get_current_connection"
TOOL_DESCRIPTION = "Show the current server, database, schema and access mode."


async def handler() -> str:
    manager = get_manager()
    info = manager.get_connection_info()
    if manager.state.current_server:
        info["user"] = manager.get_server_config(manager.state.current_server).username
    return json.dumps(info)
