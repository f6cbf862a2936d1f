"""MCP tool: mutation_dry_run - Execute a mutation and roll it back."""

from typing import Optional

from dal.connection_state import ConnectionOverride
from mcp_server.utils.context import get_engine

TOOL_NAME = "mutation_dry_run"
TOOL_DESCRIPTION = (
    "Execute an INSERT, UPDATE or DELETE inside a transaction that is rolled back, "
    "returning the exact affected row count, before/after rows and any PostgreSQL error."
)


async def handler(
    sql: str,
    sample_size: Optional[int] = None,
    server: Optional[str] = None,
    database: Optional[str] = None,
    schema: Optional[str] = None,
) -> str:
    """Dry-run a mutation.

    Failure Modes:
        - Invalid Request: The statement is not an INSERT, UPDATE or DELETE.
        - Mutation Blocked: The server runs in read-only access mode.

    Args:
        sql: A single INSERT, UPDATE or DELETE statement (a WITH prefix is allowed).
        sample_size: Rows to return (default 10, max 20).
        server: Target server for this call only.
        database: Target database for this call only.
        schema: Target schema for this call only.
    """
    result = await get_engine().mutation_dry_run(
        sql,
        sample_size=sample_size,
        override=ConnectionOverride.from_args(server, database, schema),
    )
    return result.to_json()
