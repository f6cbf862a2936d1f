"""Central registry for MCP tools.

This module provides a single point of registration for all MCP tools.
It collects tool modules and registers them with the FastMCP server.
"""

import logging
from types import ModuleType
from typing import TYPE_CHECKING, List, Set

if TYPE_CHECKING:
    from fastmcp import FastMCP

logger = logging.getLogger(__name__)

# Canonical tool names; this is the authoritative list of all public tools
CANONICAL_TOOLS: Set[str] = {
    # Execution tools
    "execute_sql",
    "execute_sql_file",
    "preview_sql_file",
    "dry_run_sql_file",
    "mutation_preview",
    "mutation_dry_run",
    "batch_execute",
    "explain_query",
    # Transaction tools
    "begin_transaction",
    "commit_transaction",
    "rollback_transaction",
    "get_transaction_info",
    "list_active_transactions",
    # Server tools
    "list_servers",
    "switch_server_db",
    "get_current_connection",
    "get_connection_context",
}


def get_all_tool_names() -> List[str]:
    """Return list of all canonical tool names."""
    return sorted(CANONICAL_TOOLS)


def validate_tool_names() -> bool:
    """Validate that no canonical tool names end with '_tool'.

    Returns:
        True if all names are valid, raises ValueError otherwise.
    """
    invalid = [name for name in CANONICAL_TOOLS if name.endswith("_tool")]
    if invalid:
        raise ValueError(f"Tool names must not end with '_tool': {invalid}")
    return True


def _tool_modules() -> List[ModuleType]:
    from mcp_server.tools.servers import (
        get_connection_context,
        get_current_connection,
        list_servers,
        switch_server_db,
    )
    from mcp_server.tools.sql import (
        batch_execute,
        dry_run_sql_file,
        execute_sql,
        execute_sql_file,
        explain_query,
        mutation_dry_run,
        mutation_preview,
        preview_sql_file,
    )
    from mcp_server.tools.transactions import (
        begin_transaction,
        commit_transaction,
        get_transaction_info,
        list_active_transactions,
        rollback_transaction,
    )

    return [
        execute_sql,
        execute_sql_file,
        preview_sql_file,
        dry_run_sql_file,
        mutation_preview,
        mutation_dry_run,
        batch_execute,
        explain_query,
        begin_transaction,
        commit_transaction,
        rollback_transaction,
        get_transaction_info,
        list_active_transactions,
        list_servers,
        switch_server_db,
        get_current_connection,
        get_connection_context,
    ]


def register_all(mcp: "FastMCP") -> None:
    """Register all tools with the MCP server.

    Args:
        mcp: FastMCP server instance
    """
    validate_tool_names()

    from mcp_server.utils.contract_enforcement import enforce_tool_response_contract
    from mcp_server.utils.tracing import trace_tool

    registered = 0
    for module in _tool_modules():
        name = module.TOOL_NAME
        if name not in CANONICAL_TOOLS:
            raise ValueError(f"Tool module {module.__name__} declares unknown tool '{name}'")
        wrapped = enforce_tool_response_contract(name)(module.handler)
        traced = trace_tool(name)(wrapped)
        mcp.tool(name=name, description=module.TOOL_DESCRIPTION)(traced)
        registered += 1

    logger.info(f"Registered {registered} tools with MCP server")
