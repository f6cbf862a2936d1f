"""MCP tool: rollback_transaction - Roll back an explicit transaction."""

from dal.execution.models import TransactionResult
from mcp_server.utils.context import get_manager

TOOL_NAME = "rollback_transaction"
TOOL_DESCRIPTION = (
    "Roll back a transaction opened with begin_transaction and release its connection."
)


async def handler(transaction_id: str) -> str:
    """Roll back a transaction."""
    transaction = await get_manager().rollback_transaction(transaction_id)
    return TransactionResult(
        transaction_id=transaction_id,
        status="rolled_back",
        message="Transaction rolled back successfully.",
        name=transaction.name,
    ).to_json()
