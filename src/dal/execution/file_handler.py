"""Validation, reading and preprocessing of ``.sql`` files."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from dal.execution.constants import MAX_SQL_FILE_SIZE


@dataclass(frozen=True)
class SqlFile:
    """A validated SQL file and its contents."""

    path: str
    size: int
    content: str


def validate_sql_file(file_path: str) -> Path:
    """Check extension, existence, type and size of a SQL file.

    Raises:
        ValueError: With an actionable message when the file cannot be used.
    """
    if not isinstance(file_path, str) or not file_path.strip():
        raise ValueError("file_path parameter is required")

    raw = file_path.strip()
    path = Path(raw).expanduser()
    if path.suffix.lower() != ".sql":
        raise ValueError(
            f"Only .sql files are allowed. Received file extension: {path.suffix or '(none)'}"
        )

    resolved = path.resolve()
    if not resolved.exists():
        raise ValueError(f"File not found: {raw}")
    if not resolved.is_file():
        raise ValueError(f"Not a file: {raw}")

    size = resolved.stat().st_size
    if size > MAX_SQL_FILE_SIZE:
        raise ValueError(
            f"File too large. Maximum size is {MAX_SQL_FILE_SIZE // (1024 * 1024)}MB"
        )
    if size == 0:
        raise ValueError("File is empty")
    return resolved


def preprocess_sql_content(
    sql: str, patterns: Sequence[str], as_regex: bool = False
) -> str:
    """Remove patterns from SQL text.

    Literal patterns remove whole lines consisting only of the pattern (plus
    surrounding whitespace), which covers batch separators such as ``GO``.
    Regex patterns are applied in multiline mode.

    Raises:
        ValueError: If a regex pattern does not compile.
    """
    result = sql
    for pattern in patterns:
        if not pattern:
            continue
        if as_regex:
            try:
                compiled = re.compile(pattern, re.MULTILINE)
            except re.error as exc:
                raise ValueError(f"Invalid strip pattern '{pattern}': {exc}") from exc
        else:
            compiled = re.compile(rf"^[ \t]*{re.escape(pattern)}[ \t]*$", re.MULTILINE)
        result = compiled.sub("", result)
    return result


def read_sql_file(
    file_path: str,
    strip_patterns: Optional[Sequence[str]] = None,
    strip_as_regex: bool = False,
) -> SqlFile:
    """Validate and read a SQL file, applying strip patterns if given."""
    resolved = validate_sql_file(file_path)
    content = resolved.read_text(encoding="utf-8")
    if strip_patterns:
        content = preprocess_sql_content(content, strip_patterns, strip_as_regex)
    return SqlFile(path=str(resolved), size=resolved.stat().st_size, content=content)
