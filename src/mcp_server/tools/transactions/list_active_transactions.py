"""MCP tool: list_active_transactions - List open transactions."""

import json

from mcp_server.utils.context import get_manager

TOOL_NAME = "list_active_transactions"
TOOL_DESCRIPTION = "List every open transaction with its id, target and start time."


async def handler() -> str:
    transactions = get_manager().list_active_transactions()
    return json.dumps({"transactions": transactions, "count": len(transactions)})
