"""Statement splitting, classification and table extraction for PostgreSQL scripts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from common.sql.comments import strip_leading_comments, strip_sql_comments
from common.sql.lexer import SegmentKind, Token, TokenKind, scan_segments, tokenize

STATEMENT_TYPES = (
    "SELECT",
    "INSERT",
    "UPDATE",
    "DELETE",
    "CREATE",
    "ALTER",
    "DROP",
    "TRUNCATE",
    "GRANT",
    "REVOKE",
    "BEGIN",
    "COMMIT",
    "ROLLBACK",
    "SET",
    "SHOW",
    "EXPLAIN",
    "ANALYZE",
    "VACUUM",
    "REINDEX",
    "COMMENT",
    "WITH",
    "DO",
    "CALL",
    "EXECUTE",
)

_WITH_MAIN_VERBS = ("SELECT", "INSERT", "UPDATE", "DELETE")

# Words that can follow FROM/JOIN/INTO/UPDATE without naming a table.
_TABLE_KEYWORDS_TO_SKIP = {"SELECT", "WHERE", "SET", "VALUES", "AND", "OR", "LATERAL"}

# FROM inside these function calls is an argument separator, not a table source.
_FROM_ARGUMENT_FUNCTIONS = {"EXTRACT", "SUBSTRING", "TRIM", "OVERLAY", "POSITION"}


@dataclass(frozen=True)
class ParsedStatement:
    """A single statement of a script and the 1-based line where it starts."""

    sql: str
    line_number: int


@dataclass(frozen=True)
class TableReference:
    """A table referenced by a statement."""

    schema: str
    table: str


def split_sql_statements(sql: str) -> List[ParsedStatement]:
    """Split SQL into statements, tracking the line each one starts on.

    A ``;`` ends a statement only outside strings, quoted identifiers, comments
    and dollar-quoted bodies. Each statement keeps its terminating ``;``. A
    trailing statement without a terminator is still returned.

    Args:
        sql: Script text.

    Returns:
        Statements in source order.
    """
    statements: List[ParsedStatement] = []
    if not isinstance(sql, str) or not sql:
        return statements

    parts: List[str] = []
    start_line: Optional[int] = None

    for segment in scan_segments(sql):
        if segment.kind is not SegmentKind.CODE:
            if start_line is None:
                start_line = segment.line
            parts.append(segment.text)
            continue

        text = segment.text
        line = segment.line
        piece_start = 0
        for offset, ch in enumerate(text):
            if ch == ";":
                parts.append(text[piece_start : offset + 1])
                _emit_statement(statements, parts, start_line)
                parts = []
                start_line = None
                piece_start = offset + 1
            elif ch == "\n":
                line += 1
            elif start_line is None and not ch.isspace():
                start_line = line
        parts.append(text[piece_start:])

    _emit_statement(statements, parts, start_line)
    return statements


def _emit_statement(
    statements: List[ParsedStatement], parts: List[str], start_line: Optional[int]
) -> None:
    text = "".join(parts).strip()
    if text and text.rstrip(";").strip():
        statements.append(ParsedStatement(sql=text, line_number=start_line or 1))


def filter_executable_statements(statements: List[ParsedStatement]) -> List[ParsedStatement]:
    """Drop statements that contain only comments or a bare terminator."""
    executable = []
    for statement in statements:
        body = strip_leading_comments(statement.sql)
        if body and body.rstrip(";").strip():
            executable.append(statement)
    return executable


def parse_executable_statements(sql: str) -> List[ParsedStatement]:
    """Split a script and keep only statements worth sending to the server."""
    return filter_executable_statements(split_sql_statements(sql))


def detect_statement_type(sql: str) -> str:
    """Classify a statement by its leading keyword.

    ``WITH`` statements are refined to ``WITH SELECT``/``WITH INSERT``/
    ``WITH UPDATE``/``WITH DELETE`` using the first such verb outside the CTE
    bodies, falling back to the first one found anywhere.

    Returns:
        One of ``STATEMENT_TYPES``, a ``WITH ...`` refinement, or ``UNKNOWN``.
    """
    tokens = tokenize(sql)
    if not tokens or tokens[0].kind is not TokenKind.WORD:
        return "UNKNOWN"
    verb = tokens[0].value
    if verb not in STATEMENT_TYPES:
        return "UNKNOWN"
    if verb != "WITH":
        return verb

    main_verb = _main_verb_after_ctes(tokens)
    return f"WITH {main_verb}" if main_verb else "WITH"


def _main_verb_after_ctes(tokens: List[Token]) -> Optional[str]:
    depth = 0
    first_nested: Optional[str] = None
    previous: Optional[Token] = None
    for token in tokens[1:]:
        if token.kind is TokenKind.PUNCT:
            if token.value == "(":
                depth += 1
            elif token.value == ")":
                depth = max(0, depth - 1)
        elif token.kind is TokenKind.WORD and token.value in _WITH_MAIN_VERBS:
            is_row_lock = (
                token.value == "UPDATE"
                and previous is not None
                and previous.kind is TokenKind.WORD
                and previous.value in ("FOR", "KEY", "NO")
            )
            if not is_row_lock:
                if depth == 0:
                    return token.value
                if first_nested is None:
                    first_nested = token.value
        previous = token
    return first_nested


def extract_tables_from_sql(sql: str) -> List[TableReference]:
    """Best-effort extraction of tables named after FROM/JOIN/INTO/UPDATE.

    Unquoted names are folded to lower case the way PostgreSQL folds them;
    quoted names are kept verbatim. The schema defaults to ``public``.
    Results are de-duplicated case-insensitively in order of appearance.
    """
    tables: List[TableReference] = []
    seen = set()
    tokens = tokenize(sql)
    call_stack: List[Optional[str]] = []

    for idx, token in enumerate(tokens):
        if token.kind is TokenKind.PUNCT:
            if token.value == "(":
                prev = tokens[idx - 1] if idx > 0 else None
                call_stack.append(prev.value if prev and prev.kind is TokenKind.WORD else None)
            elif token.value == ")" and call_stack:
                call_stack.pop()
            continue
        if token.kind is not TokenKind.WORD:
            continue
        if token.value not in ("FROM", "JOIN", "INTO", "UPDATE"):
            continue
        if token.value == "FROM" and call_stack and call_stack[-1] in _FROM_ARGUMENT_FUNCTIONS:
            continue
        if token.value == "UPDATE" and idx > 0 and tokens[idx - 1].value in ("FOR", "KEY", "NO"):
            continue

        reference = _read_table_reference(
            tokens, idx + 1, reject_calls=token.value in ("FROM", "JOIN")
        )
        if reference is None:
            continue
        key = f"{reference.schema}.{reference.table}".lower()
        if key not in seen:
            seen.add(key)
            tables.append(reference)

    return tables


def _identifier_text(token: Token) -> Optional[str]:
    if token.kind is TokenKind.IDENTIFIER:
        return token.value
    if token.kind is TokenKind.WORD:
        return token.value.lower()
    return None


def _read_table_reference(
    tokens: List[Token], idx: int, reject_calls: bool = True
) -> Optional[TableReference]:
    if idx < len(tokens) and tokens[idx].kind is TokenKind.WORD and tokens[idx].value == "ONLY":
        idx += 1
    if idx >= len(tokens):
        return None
    first = tokens[idx]
    if first.kind is TokenKind.WORD and first.value in _TABLE_KEYWORDS_TO_SKIP:
        return None
    first_name = _identifier_text(first)
    if first_name is None:
        return None

    schema = "public"
    table = first_name
    if (
        idx + 2 < len(tokens)
        and tokens[idx + 1].kind is TokenKind.PUNCT
        and tokens[idx + 1].value == "."
    ):
        second_name = _identifier_text(tokens[idx + 2])
        if second_name is not None:
            schema, table = first_name, second_name
            idx += 2

    # After FROM or JOIN, a name followed by "(" is a set-returning function call.
    if (
        reject_calls
        and idx + 1 < len(tokens)
        and tokens[idx + 1].kind is TokenKind.PUNCT
        and tokens[idx + 1].value == "("
    ):
        return None
    return TableReference(schema=schema, table=table)


def normalize_sql(sql: str) -> str:
    """Remove comments and collapse whitespace."""
    return " ".join(strip_sql_comments(sql).split())
