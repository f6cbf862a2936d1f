"""Named server configuration loaded from the environment."""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Union

from common.config.env import get_env_float, get_env_int, get_env_str
from dal.util.timeouts import DEFAULT_QUERY_TIMEOUT_MS, clamp_query_timeout_ms

logger = logging.getLogger(__name__)

DEFAULT_PORT = 5432
DEFAULT_DATABASE = "postgres"
DEFAULT_SCHEMA = "public"

SSL_MODES = {"disable", "allow", "prefer", "require", "verify-ca", "verify-full"}
READ_ONLY_MODE_VALUES = {"readonly", "read-only", "ro"}


class AccessMode(str, enum.Enum):
    """Process-wide access policy."""

    FULL = "full"
    READONLY = "readonly"


def parse_access_mode(value: Optional[str]) -> AccessMode:
    """Map ``POSTGRES_ACCESS_MODE`` values onto an ``AccessMode``."""
    if value and value.strip().lower() in READ_ONLY_MODE_VALUES:
        return AccessMode.READONLY
    return AccessMode.FULL


@dataclass(frozen=True)
class ServerConfig:
    """Connection parameters for one configured server."""

    name: str
    host: str
    port: int = DEFAULT_PORT
    username: str = ""
    password: str = field(default="", repr=False)
    default_database: Optional[str] = None
    default_schema: Optional[str] = None
    is_default: bool = False
    ssl: Optional[str] = None
    context: Optional[str] = None

    def connect_kwargs(self, database: str) -> Dict[str, Any]:
        """Return asyncpg connection keyword arguments for ``database``."""
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "user": self.username,
            "password": self.password,
            "database": database,
        }
        if self.ssl:
            kwargs["ssl"] = self.ssl
        return kwargs


def _parse_ssl(value: Union[bool, str, None], server_name: str) -> Optional[str]:
    if value is None or value is False:
        return None
    if value is True:
        return "require"
    if isinstance(value, str) and value.strip().lower() in SSL_MODES:
        mode = value.strip().lower()
        return None if mode == "disable" else mode
    logger.warning("Ignoring unsupported ssl setting for server '%s': %r", server_name, value)
    return None


def _parse_port(value: Any, server_name: str) -> int:
    if value is None or value == "":
        return DEFAULT_PORT
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Server '{server_name}' has an invalid port: {value!r}")


def parse_server_entry(name: str, entry: Mapping[str, Any]) -> ServerConfig:
    """Build a ``ServerConfig`` from one ``POSTGRES_SERVERS`` entry."""
    return ServerConfig(
        name=name,
        host=str(entry["host"]),
        port=_parse_port(entry.get("port"), name),
        username=str(entry.get("username") or ""),
        password=str(entry.get("password") or ""),
        default_database=entry.get("defaultDatabase") or None,
        default_schema=entry.get("defaultSchema") or None,
        is_default=entry.get("isDefault") is True,
        ssl=_parse_ssl(entry.get("ssl"), name),
        context=entry.get("context") or None,
    )


def load_servers_config(raw: Optional[str] = None) -> Dict[str, ServerConfig]:
    """Parse the ``POSTGRES_SERVERS`` JSON map into server configs.

    Invalid JSON yields an empty registry; entries without a host, or with an
    unusable port, are dropped with a warning.
    """
    if raw is None:
        raw = get_env_str("POSTGRES_SERVERS")
    if not raw:
        logger.warning("POSTGRES_SERVERS is not set; no servers are configured.")
        return {}

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("Error parsing POSTGRES_SERVERS: %s", exc)
        return {}
    if not isinstance(data, dict):
        logger.error("POSTGRES_SERVERS must be a JSON object keyed by server name.")
        return {}

    servers: Dict[str, ServerConfig] = {}
    for name, entry in data.items():
        if not isinstance(entry, dict) or not entry.get("host"):
            logger.warning("Skipping server '%s': missing host", name)
            continue
        try:
            servers[name] = parse_server_entry(name, entry)
        except ValueError as exc:
            logger.warning("Skipping server '%s': %s", name, exc)
    return servers


def find_default_server(servers: Mapping[str, ServerConfig]) -> Optional[str]:
    """Return the server marked ``isDefault``, or the only server if there is one."""
    for name, config in servers.items():
        if config.is_default:
            return name
    if len(servers) == 1:
        return next(iter(servers))
    return None


@dataclass(frozen=True)
class PoolSettings:
    """Pool sizing, timeouts and global limits."""

    query_timeout_ms: int = DEFAULT_QUERY_TIMEOUT_MS
    max_total_connections: int = 50
    pool_cache_size: int = 10
    pool_idle_timeout_seconds: float = 300.0
    pool_sweep_interval_seconds: float = 60.0
    main_pool_max_size: int = 10
    cached_pool_max_size: int = 5
    inactive_connection_lifetime_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    pool_acquire_timeout_seconds: float = 5.0
    transaction_max_age_seconds: float = 45 * 60.0
    transaction_cleanup_interval_seconds: float = 5 * 60.0
    application_name: str = "postgres_mcp"

    @classmethod
    def from_env(cls) -> "PoolSettings":
        """Read overrides from ``POSTGRES_*`` environment variables."""
        return cls(
            query_timeout_ms=clamp_query_timeout_ms(
                get_env_int("POSTGRES_QUERY_TIMEOUT_MS", DEFAULT_QUERY_TIMEOUT_MS)
            ),
            max_total_connections=get_env_int("POSTGRES_MAX_TOTAL_CONNECTIONS", 50, min_value=1),
            pool_cache_size=get_env_int("POSTGRES_POOL_CACHE_SIZE", 10, min_value=1),
            pool_idle_timeout_seconds=get_env_float("POSTGRES_POOL_IDLE_TIMEOUT_SECONDS", 300.0),
            pool_sweep_interval_seconds=get_env_float(
                "POSTGRES_POOL_SWEEP_INTERVAL_SECONDS", 60.0
            ),
            pool_acquire_timeout_seconds=get_env_float(
                "POSTGRES_POOL_ACQUIRE_TIMEOUT_SECONDS", 5.0
            ),
            application_name=get_env_str("POSTGRES_APPLICATION_NAME", "postgres_mcp"),
        )
