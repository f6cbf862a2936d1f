"""MCP tool: commit_transaction - Commit an explicit transaction."""

from dal.execution.models import TransactionResult
from mcp_server.utils.context import get_manager

TOOL_NAME = "commit_transaction"
TOOL_DESCRIPTION = "Commit a transaction opened with begin_transaction and release its connection."


async def handler(transaction_id: str) -> str:
    """Commit a transaction.

    Failure Modes:
        - Invalid Request: Unknown or already finished transaction_id.
    """
    transaction = await get_manager().commit_transaction(transaction_id)
    return TransactionResult(
        transaction_id=transaction_id,
        status="committed",
        message="Transaction committed successfully.",
        name=transaction.name,
    ).to_json()
