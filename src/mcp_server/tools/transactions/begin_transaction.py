"""MCP tool: begin_transaction - Open an explicit transaction on the session connection."""

from typing import Optional

from dal.execution.models import TransactionResult
from mcp_server.utils.context import get_manager

TOOL_NAME = "begin_transaction"
TOOL_DESCRIPTION = (
    "Start a transaction on a dedicated connection of the current server and database. "
    "Pass the returned transaction_id to execute_sql, then commit or roll back."
)


async def handler(name: Optional[str] = None) -> str:
    """Begin a transaction.

    Transactions left open for 45 minutes are rolled back automatically.

    Args:
        name: Optional label shown by list_active_transactions.
    """
    transaction = await get_manager().begin_transaction(name)
    label = f' "{name}"' if name else ""
    return TransactionResult(
        transaction_id=transaction.transaction_id,
        status="started",
        message=(
            f"Transaction{label} started. Use transaction_id "
            f'"{transaction.transaction_id}" with execute_sql or commit/rollback.'
        ),
        name=name,
    ).to_json()
