"""SQL comment stripping utilities."""

from __future__ import annotations

from common.sql.lexer import SegmentKind, scan_segments


def strip_sql_comments(sql: str) -> str:
    """Strip SQL line/block comments while preserving quoted strings.

    Block comments are replaced by their line breaks (or a single space) so
    line numbers computed on the result still match the input.
    """
    if not isinstance(sql, str) or not sql:
        return ""

    out: list[str] = []
    for segment in scan_segments(sql):
        if segment.kind is not SegmentKind.COMMENT:
            out.append(segment.text)
            continue
        newlines = segment.text.count("\n")
        out.append("\n" * newlines if newlines else " ")
    return "".join(out)


def strip_leading_comments(sql: str) -> str:
    """Drop whitespace and comments ahead of the first real SQL character.

    Returns an empty string when the input holds nothing but comments.
    """
    if not isinstance(sql, str) or not sql:
        return ""

    for segment in scan_segments(sql):
        if segment.kind is SegmentKind.COMMENT:
            continue
        if segment.kind is SegmentKind.CODE and not segment.text.strip():
            continue
        offset = segment.start
        if segment.kind is SegmentKind.CODE:
            offset += len(segment.text) - len(segment.text.lstrip())
        return sql[offset:].strip()
    return ""
