"""Session and per-request connection identity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional


@dataclass
class ConnectionState:
    """Server, database and schema the session's main pool is bound to.

    One instance is owned by a ``ConnectionPoolManager``; all fields are None
    until the first successful switch.
    """

    current_server: Optional[str] = None
    current_database: Optional[str] = None
    current_schema: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return self.current_server is not None and self.current_database is not None

    def update(self, server: str, database: str, schema: str) -> None:
        self.current_server = server
        self.current_database = database
        self.current_schema = schema

    def clear(self) -> None:
        self.current_server = None
        self.current_database = None
        self.current_schema = None

    def as_context(self) -> Dict[str, Optional[str]]:
        return {
            "server": self.current_server,
            "database": self.current_database,
            "schema": self.current_schema,
        }


@dataclass(frozen=True)
class ConnectionOverride:
    """Request-scoped target that bypasses the main connection for one call."""

    server: Optional[str] = None
    database: Optional[str] = None
    schema: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.server or self.database or self.schema)

    @classmethod
    def from_args(
        cls,
        server: Optional[str] = None,
        database: Optional[str] = None,
        schema: Optional[str] = None,
    ) -> Optional["ConnectionOverride"]:
        """Build an override from tool arguments, or None when nothing was given."""
        override = cls(server=server or None, database=database or None, schema=schema or None)
        return None if override.is_empty else override


@dataclass(frozen=True)
class ConnectionTarget:
    """Fully resolved server/database/schema for a leased connection."""

    server: str
    database: str
    schema: str

    @property
    def pool_key(self) -> str:
        return f"{self.server}:{self.database}"

    def as_dict(self) -> Dict[str, str]:
        return {"server": self.server, "database": self.database, "schema": self.schema}
