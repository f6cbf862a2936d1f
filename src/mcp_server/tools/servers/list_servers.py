"""MCP tool: list_servers - List configured servers and, optionally, their databases."""

import json
import logging
from typing import Any, Dict, List, Optional

from mcp_server.utils.context import get_manager
from mcp_server.utils.masking import mask_host

logger = logging.getLogger(__name__)

TOOL_NAME = "list_servers"
TOOL_DESCRIPTION = (
    "List configured PostgreSQL servers with connection status. With fetch_databases, "
    "also list the databases of the connected server."
)


async def handler(
    filter: Optional[str] = None,
    include_system_dbs: bool = False,
    fetch_databases: bool = False,
) -> str:
    """List servers.

    Data Access:
        Reads server configuration; hosts are masked in the output. Databases are
        read from pg_database of the connected server only.

    Args:
        filter: Case-insensitive substring matched against server names and hosts,
            and against database names when databases are fetched.
        include_system_dbs: Include template0/template1.
        fetch_databases: List databases of the connected server.
    """
    manager = get_manager()
    state = manager.state
    default_server = manager.default_server()
    needle = filter.lower() if filter else None

    servers: List[Dict[str, Any]] = []
    for name, config in manager.servers.items():
        if needle and needle not in name.lower() and needle not in config.host.lower():
            continue

        is_connected = manager.is_connected and state.current_server == name
        entry: Dict[str, Any] = {
            "name": name,
            "host": mask_host(config.host),
            "port": config.port,
            "is_connected": is_connected,
            "is_default": config.is_default or name == default_server,
            "default_database": config.default_database,
            "default_schema": config.default_schema,
        }
        if config.context:
            entry["context"] = config.context

        if fetch_databases and is_connected:
            try:
                databases = await manager.list_databases(name, include_system_dbs)
            except Exception as exc:
                logger.warning("Could not list databases on server '%s': %s", name, exc)
            else:
                if needle:
                    databases = [db for db in databases if needle in db["name"].lower()]
                entry["databases"] = databases

        servers.append(entry)

    return json.dumps(
        {
            "servers": servers,
            "current_server": state.current_server,
            "current_database": state.current_database,
            "current_schema": state.current_schema,
        }
    )
