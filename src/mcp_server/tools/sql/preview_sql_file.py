"""MCP tool: preview_sql_file - Summarize a .sql file without executing it."""

from typing import List, Optional

from mcp_server.utils.context import get_engine

TOOL_NAME = "preview_sql_file"
TOOL_DESCRIPTION = (
    "Parse a .sql file and show statement counts by type, statement previews and "
    "warnings for destructive statements. Nothing is executed."
)


async def handler(
    file_path: str,
    strip_patterns: Optional[List[str]] = None,
    strip_as_regex: bool = False,
    max_statements: Optional[int] = None,
) -> str:
    """Preview a SQL file.

    Args:
        file_path: Path of the .sql file.
        strip_patterns: Lines or patterns removed before parsing.
        strip_as_regex: Treat strip_patterns as regular expressions.
        max_statements: Statements to preview (default 20, max 100).
    """
    result = get_engine().preview_sql_file(
        file_path,
        strip_patterns=strip_patterns,
        strip_as_regex=strip_as_regex,
        max_statements=max_statements,
    )
    return result.to_json()
