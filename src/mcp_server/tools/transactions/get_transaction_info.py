"""MCP tool: get_transaction_info - Describe an open transaction."""

import json

from mcp_server.utils.context import get_manager

TOOL_NAME = "get_transaction_info"
TOOL_DESCRIPTION = "Show the server, database, schema, name and start time of an open transaction."


async def handler(transaction_id: str) -> str:
    return json.dumps(get_manager().get_transaction_info(transaction_id))
