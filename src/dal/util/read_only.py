"""Read-only SQL enforcement for sessions running under the read-only access mode."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from opentelemetry import trace

from common.sql.lexer import Token, TokenKind, tokenize
from dal.errors import ReadOnlyViolationError

MAX_SQL_LENGTH_FOR_VALIDATION = 100_000

READ_ONLY_LEADING_VERBS = {"SELECT", "WITH", "EXPLAIN", "SHOW", "VALUES", "TABLE"}

# Multi-word operations come before their single-word prefixes.
WRITE_OPERATIONS: Tuple[str, ...] = (
    "REFRESH MATERIALIZED VIEW",
    "IMPORT FOREIGN SCHEMA",
    "RELEASE SAVEPOINT",
    "REASSIGN OWNED",
    "SECURITY LABEL",
    "COMMENT ON",
    "INSERT",
    "UPDATE",
    "DELETE",
    "MERGE",
    "UPSERT",
    "DROP",
    "CREATE",
    "ALTER",
    "TRUNCATE",
    "GRANT",
    "REVOKE",
    "COPY",
    "VACUUM",
    "REINDEX",
    "CLUSTER",
    "ANALYZE",
    "LOCK",
    "DISCARD",
    "RESET",
    "SET",
    "DO",
    "CALL",
    "EXECUTE",
    "BEGIN",
    "COMMIT",
    "ROLLBACK",
    "SAVEPOINT",
    "LOAD",
    "NOTIFY",
    "LISTEN",
    "UNLISTEN",
)

# Only data-modifying statements can legally appear inside parentheses.
NESTED_WRITE_VERBS = {"INSERT", "UPDATE", "DELETE", "MERGE"}

DANGEROUS_FUNCTIONS = frozenset(
    {
        # large objects
        "LO_IMPORT",
        "LO_EXPORT",
        "LO_UNLINK",
        "LO_CREATE",
        "LO_OPEN",
        "LO_WRITE",
        "LO_PUT",
        # file system
        "PG_READ_FILE",
        "PG_READ_BINARY_FILE",
        "PG_WRITE_FILE",
        "PG_FILE_WRITE",
        "PG_FILE_UNLINK",
        "PG_FILE_RENAME",
        "PG_LS_DIR",
        "PG_STAT_FILE",
        # remote execution
        "DBLINK_EXEC",
        "DBLINK",
        "DBLINK_CONNECT",
        "DBLINK_SEND_QUERY",
        "COPY_TO",
        "COPY_FROM",
        # administration
        "PG_TERMINATE_BACKEND",
        "PG_CANCEL_BACKEND",
        "PG_RELOAD_CONF",
        "PG_ROTATE_LOGFILE",
        "PG_SWITCH_WAL",
        "PG_SWITCH_XLOG",
        # sequences
        "NEXTVAL",
        "SETVAL",
        "CURRVAL",
        # advisory locks
        "PG_ADVISORY_LOCK",
        "PG_ADVISORY_LOCK_SHARED",
        "PG_ADVISORY_XACT_LOCK",
        "PG_ADVISORY_XACT_LOCK_SHARED",
        "PG_TRY_ADVISORY_LOCK",
        "PG_TRY_ADVISORY_LOCK_SHARED",
        "PG_TRY_ADVISORY_XACT_LOCK",
        "PG_TRY_ADVISORY_XACT_LOCK_SHARED",
        "PG_ADVISORY_UNLOCK",
        "PG_ADVISORY_UNLOCK_SHARED",
        "PG_ADVISORY_UNLOCK_ALL",
    }
)

_ROW_LOCK_PREFIXES = {"FOR", "KEY", "NO"}
_FALSE_OPTION_VALUES = {"FALSE", "OFF", "0"}


@dataclass(frozen=True)
class ReadOnlyCheck:
    """Outcome of a read-only classification."""

    is_read_only: bool
    reason: Optional[str] = None


_READ_ONLY = ReadOnlyCheck(is_read_only=True)


def _reject(reason: str) -> ReadOnlyCheck:
    return ReadOnlyCheck(is_read_only=False, reason=reason)


def is_read_only_sql(sql: str) -> ReadOnlyCheck:
    """Classify SQL as read-only or not.

    The text is tokenized with the shared linear-time lexer, so comments are
    ignored and string or dollar-quoted contents can never look like keywords.
    Oversized input is rejected before it is scanned at all.
    """
    if not sql or not isinstance(sql, str):
        return _reject("SQL is required")
    if len(sql) > MAX_SQL_LENGTH_FOR_VALIDATION:
        return _reject(
            f"SQL too large for safe validation ({len(sql)} chars, "
            f"max {MAX_SQL_LENGTH_FOR_VALIDATION}). Review manually."
        )

    statements = _split_tokens(tokenize(sql))
    if not statements:
        return _reject("No SQL statement found")

    for tokens in statements:
        result = _check_statement(tokens)
        if not result.is_read_only:
            return result
    return _READ_ONLY


def enforce_read_only_sql(sql: str, read_only: bool) -> None:
    """Raise ReadOnlyViolationError when non-read-only SQL is issued in read-only mode."""
    if not read_only:
        return
    result = is_read_only_sql(sql)
    if result.is_read_only:
        return

    span = trace.get_current_span()
    if span and span.is_recording():
        span.add_event(
            "dal.read_only.blocked",
            attributes={
                "category": "mutation_blocked",
                "reason": result.reason or "",
            },
        )
    raise ReadOnlyViolationError(result.reason or "SQL is not read-only")


def _split_tokens(tokens: List[Token]) -> List[List[Token]]:
    statements: List[List[Token]] = []
    current: List[Token] = []
    for token in tokens:
        if token.kind is TokenKind.PUNCT and token.value == ";":
            if current:
                statements.append(current)
            current = []
            continue
        current.append(token)
    if current:
        statements.append(current)
    return statements


def _is_word(token: Token, *values: str) -> bool:
    return token.kind is TokenKind.WORD and (not values or token.value in values)


def _is_punct(token: Token, value: str) -> bool:
    return token.kind is TokenKind.PUNCT and token.value == value


def _match_write_operation(tokens: Sequence[Token], idx: int) -> Optional[str]:
    for operation in WRITE_OPERATIONS:
        words = operation.split()
        if idx + len(words) > len(tokens):
            continue
        if all(_is_word(tokens[idx + k], word) for k, word in enumerate(words)):
            return operation
    return None


def _check_statement(tokens: List[Token]) -> ReadOnlyCheck:
    first = tokens[0]
    if _is_punct(first, "("):
        pass
    elif _is_word(first) and first.value in READ_ONLY_LEADING_VERBS:
        if first.value == "EXPLAIN":
            return _check_explain(tokens)
    else:
        operation = _match_write_operation(tokens, 0)
        if operation:
            return _reject(f"Write operation '{operation}' detected")
        return _reject(f"Statement type '{first.value}' is not allowed in read-only mode")

    result = _check_structure(tokens, leading_with=_is_word(first, "WITH"))
    if not result.is_read_only:
        return result
    return _check_functions(tokens)


def _check_structure(tokens: List[Token], leading_with: bool) -> ReadOnlyCheck:
    depth = 0
    for idx, token in enumerate(tokens):
        if token.kind is TokenKind.PUNCT:
            if token.value == "(":
                depth += 1
                nested = tokens[idx + 1] if idx + 1 < len(tokens) else None
                if nested is not None and _is_word(nested) and nested.value in NESTED_WRITE_VERBS:
                    if _opens_cte_body(tokens, idx):
                        return _reject(f"Write operation '{nested.value}' in CTE detected")
                    return _reject(f"Write operation '{nested.value}' detected")
            elif token.value == ")":
                depth = max(0, depth - 1)
            continue
        if token.kind is not TokenKind.WORD:
            continue

        previous = tokens[idx - 1] if idx > 0 else None
        if token.value == "INTO" and not (previous is not None and _is_word(previous, "INSERT", "MERGE")):
            return _reject("Write operation 'SELECT INTO' detected")
        if leading_with and depth == 0 and token.value in NESTED_WRITE_VERBS:
            if token.value == "UPDATE" and previous is not None and _is_word(
                previous, *_ROW_LOCK_PREFIXES
            ):
                continue
            return _reject(f"Write operation '{token.value}' detected")
    return _READ_ONLY


def _opens_cte_body(tokens: List[Token], paren_idx: int) -> bool:
    """Return True when the ``(`` at ``paren_idx`` follows ``AS [NOT] [MATERIALIZED]``."""
    idx = paren_idx - 1
    if idx >= 0 and _is_word(tokens[idx], "MATERIALIZED"):
        idx -= 1
        if idx >= 0 and _is_word(tokens[idx], "NOT"):
            idx -= 1
    return idx >= 0 and _is_word(tokens[idx], "AS")


def _check_explain(tokens: List[Token]) -> ReadOnlyCheck:
    analyze, body_start = _parse_explain_options(tokens)
    if analyze:
        inner = tokens[body_start:]
        if not inner:
            return _reject("EXPLAIN ANALYZE requires a statement")
        result = _check_statement(inner)
        if not result.is_read_only:
            return result
    return _check_functions(tokens)


def _parse_explain_options(tokens: List[Token]) -> Tuple[bool, int]:
    """Return whether EXPLAIN runs with ANALYZE and where the explained statement starts."""
    analyze = False
    idx = 1
    if idx < len(tokens) and _is_punct(tokens[idx], "("):
        idx += 1
        expecting_name = True
        option: Optional[str] = None
        while idx < len(tokens) and not _is_punct(tokens[idx], ")"):
            token = tokens[idx]
            if _is_punct(token, ","):
                expecting_name = True
                option = None
            elif expecting_name:
                option = token.value
                if option in ("ANALYZE", "ANALYSE"):
                    analyze = True
                expecting_name = False
            elif option in ("ANALYZE", "ANALYSE"):
                value = token.value.strip("'").upper()
                analyze = value not in _FALSE_OPTION_VALUES
            idx += 1
        return analyze, idx + 1

    while idx < len(tokens) and _is_word(tokens[idx], "ANALYZE", "ANALYSE", "VERBOSE"):
        if tokens[idx].value != "VERBOSE":
            analyze = True
        idx += 1
    return analyze, idx


def _check_functions(tokens: List[Token]) -> ReadOnlyCheck:
    for idx, token in enumerate(tokens[:-1]):
        if token.kind not in (TokenKind.WORD, TokenKind.IDENTIFIER):
            continue
        name = token.value.upper()
        if name in DANGEROUS_FUNCTIONS and _is_punct(tokens[idx + 1], "("):
            return _reject(f"Dangerous function '{name}' detected")
    return _READ_ONLY
