"""Pagination, timing, truncation and overflow-file helpers for query results."""

from __future__ import annotations

import json
import os
import tempfile
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dal.execution.constants import MAX_OUTPUT_CHARS, SQL_TRUNCATION_SHORT

OUTPUT_FILE_PREFIX = "postgres-mcp-output-"


def start_timer() -> float:
    return time.perf_counter()


def elapsed_ms(started: float) -> float:
    """Milliseconds since ``started``, rounded to two decimals."""
    return round((time.perf_counter() - started) * 1000, 2)


def paginate_rows(
    rows: List[Dict[str, Any]], offset: int, max_rows: int
) -> Tuple[List[Dict[str, Any]], int, bool]:
    """Slice ``rows`` to one page.

    Returns:
        The page, the effective offset (clamped to the row count) and whether
        more rows follow the page.
    """
    total = len(rows)
    start = min(max(offset, 0), total)
    end = min(start + max_rows, total)
    return rows[start:end], start, end < total


def truncate_sql(sql: str, max_length: int = SQL_TRUNCATION_SHORT) -> str:
    """Trim and shorten SQL for display, marking cut text with ``...``."""
    trimmed = sql.strip()
    if len(trimmed) <= max_length:
        return trimmed
    return trimmed[:max_length] + "..."


def serialized_size(value: Any) -> int:
    return len(json.dumps(value, default=str))


def exceeds_output_limit(value: Any, max_chars: int = MAX_OUTPUT_CHARS) -> bool:
    return serialized_size(value) > max_chars


def write_output_file(payload: Dict[str, Any], directory: Optional[str] = None) -> str:
    """Write ``payload`` as JSON to a new owner-only file and return its path."""
    target_dir = Path(directory or tempfile.gettempdir())
    path = target_dir / f"{OUTPUT_FILE_PREFIX}{uuid.uuid4()}.json"
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, default=str)
    return str(path)


def build_output_payload(
    *,
    total_rows: int,
    rows: List[Dict[str, Any]],
    offset: int,
    fields: List[str],
    execution_time_ms: float,
) -> Dict[str, Any]:
    return {
        "total_rows": total_rows,
        "returned_rows": len(rows),
        "offset": offset,
        "fields": fields,
        "rows": rows,
        "execution_time_ms": execution_time_ms,
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


def count_statements_by_type(types: Iterable[str]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for statement_type in types:
        counts[statement_type] = counts.get(statement_type, 0) + 1
    return counts


def summarize_types(counts: Dict[str, int]) -> str:
    """Render type counts most-frequent first, e.g. ``3 INSERT, 1 CREATE``."""
    ordered = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return ", ".join(f"{count} {statement_type}" for statement_type, count in ordered)


def pluralize_statements(count: int) -> str:
    return f"{count} statement{'' if count == 1 else 's'}"


def format_file_size(size: int) -> str:
    """Human-readable file size: bytes below 1 KB, then KB, then MB."""
    if size < 1024:
        return f"{size} bytes"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.2f} MB"
