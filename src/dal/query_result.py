from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

_ROW_COUNT_COMMANDS = {"INSERT", "UPDATE", "DELETE", "SELECT", "MERGE", "MOVE", "FETCH", "COPY"}


@dataclass
class QueryResult:
    """Rows, affected-row count and column names of one executed statement."""

    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    fields: List[str] = field(default_factory=list)
    command: Optional[str] = None


def parse_status_row_count(status: Optional[str], fallback: int = 0) -> int:
    """Extract the row count from a command status tag such as ``INSERT 0 3``."""
    if not status:
        return fallback
    parts = status.split()
    if parts and parts[0] in _ROW_COUNT_COMMANDS and parts[-1].isdigit():
        return int(parts[-1])
    return fallback


def parse_status_command(status: Optional[str]) -> Optional[str]:
    """Return the command word of a status tag, e.g. ``CREATE TABLE`` -> ``CREATE``."""
    if not status or not status.split():
        return None
    return status.split()[0]
