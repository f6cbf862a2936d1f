"""MCP tool: switch_server_db - Point the session connection at another server/database."""

import json
from typing import Optional

from mcp_server.utils.context import get_manager

TOOL_NAME = "switch_server_db"
TOOL_DESCRIPTION = (
    "Connect the session to a configured server and optionally a database and schema. "
    "Open transactions are rolled back."
)


async def handler(
    server: str,
    database: Optional[str] = None,
    schema: Optional[str] = None,
) -> str:
    """Switch the session connection.

    The new connection is verified before the old one is closed; on failure the
    session keeps its previous connection.

    Args:
        server: Configured server name.
        database: Database (default: the server's default database).
        schema: Schema (default: the server's default schema).
    """
    target = await get_manager().switch_server(server, database, schema)
    message = f"Successfully connected to server '{server}'"
    if database:
        message += f", database '{database}'"
    if schema:
        message += f", schema '{schema}'"
    return json.dumps(
        {
            "success": True,
            "message": message,
            "current_server": target.server,
            "current_database": target.database,
            "current_schema": target.schema,
        }
    )
