"""Rollback-only execution helpers and detection of non-rollbackable statements."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, List, Optional, Sequence, Type

from common.sql.lexer import Token, TokenKind, tokenize
from dal.database import run_statement
from dal.execution.models import DryRunError, NonRollbackableWarning
from dal.query_result import QueryResult

logger = logging.getLogger(__name__)

OPERATION_SEQUENCE = "SEQUENCE"

_SAVEPOINT = "mcp_dry_run_statement"

_TRANSACTION_CONTROL_VERBS = {"BEGIN", "START", "COMMIT", "END", "ROLLBACK", "ABORT", "SAVEPOINT", "RELEASE"}


def _cannot_run_in_transaction(what: str) -> str:
    return f"{what} cannot run inside a transaction block. Statement skipped."


def _words(tokens: Sequence[Token], *values: str) -> bool:
    if len(tokens) < len(values):
        return False
    return all(
        token.kind is TokenKind.WORD and token.value == value
        for token, value in zip(tokens, values)
    )


def _has_word(tokens: Sequence[Token], value: str) -> bool:
    return any(token.kind is TokenKind.WORD and token.value == value for token in tokens)


def _has_call(tokens: Sequence[Token], name: str) -> bool:
    for idx, token in enumerate(tokens[:-1]):
        if token.kind in (TokenKind.WORD, TokenKind.IDENTIFIER) and token.value.upper() == name:
            following = tokens[idx + 1]
            if following.kind is TokenKind.PUNCT and following.value == "(":
                return True
    return False


def _has_insert_into(tokens: Sequence[Token]) -> bool:
    return any(_words(tokens[idx : idx + 2], "INSERT", "INTO") for idx in range(len(tokens) - 1))


def detect_non_rollbackable_operations(
    sql: str,
    statement_index: Optional[int] = None,
    line_number: Optional[int] = None,
) -> List[NonRollbackableWarning]:
    """Find effects of ``sql`` that a dry-run rollback cannot undo.

    Warnings with ``must_skip`` mark statements that must not run inside a
    dry-run at all; the others run and only carry a warning. Keywords inside
    strings, quoted identifiers and comments are ignored.
    """
    tokens = tokenize(sql)
    found: List[tuple] = []
    if not tokens:
        return []

    leading = tokens[0]
    if _words(tokens, "VACUUM"):
        found.append(("VACUUM", _cannot_run_in_transaction("VACUUM"), True))
    if _words(tokens, "CLUSTER"):
        found.append(("CLUSTER", _cannot_run_in_transaction("CLUSTER"), True))
    if _words(tokens, "REINDEX") and _has_word(tokens, "CONCURRENTLY"):
        found.append(
            ("REINDEX_CONCURRENTLY", _cannot_run_in_transaction("REINDEX CONCURRENTLY"), True)
        )
    if (_words(tokens, "CREATE", "INDEX") or _words(tokens, "CREATE", "UNIQUE", "INDEX")) and _has_word(
        tokens, "CONCURRENTLY"
    ):
        found.append(
            (
                "CREATE_INDEX_CONCURRENTLY",
                _cannot_run_in_transaction("CREATE INDEX CONCURRENTLY"),
                True,
            )
        )
    if _words(tokens, "CREATE", "DATABASE"):
        found.append(("CREATE_DATABASE", _cannot_run_in_transaction("CREATE DATABASE"), True))
    if _words(tokens, "DROP", "DATABASE"):
        found.append(("DROP_DATABASE", _cannot_run_in_transaction("DROP DATABASE"), True))
    if leading.kind is TokenKind.WORD and leading.value in _TRANSACTION_CONTROL_VERBS:
        found.append(
            (
                "TRANSACTION_CONTROL",
                f"{leading.value} would end or alter the dry-run transaction. Statement skipped.",
                True,
            )
        )
    if _has_call(tokens, "NEXTVAL"):
        found.append(
            (
                OPERATION_SEQUENCE,
                "NEXTVAL increments sequence even when transaction is rolled back. "
                "Statement skipped to prevent sequence consumption.",
                True,
            )
        )
    if _has_call(tokens, "SETVAL"):
        found.append(
            (
                OPERATION_SEQUENCE,
                "SETVAL modifies sequence. Statement skipped to prevent side effects.",
                True,
            )
        )
    if _has_insert_into(tokens):
        found.append(
            (
                OPERATION_SEQUENCE,
                "INSERT may consume sequence values (for SERIAL/BIGSERIAL columns) "
                "even when rolled back.",
                False,
            )
        )
    if _has_word(tokens, "NOTIFY") or _has_call(tokens, "PG_NOTIFY"):
        found.append(
            (
                "NOTIFY",
                "NOTIFY sends notifications on commit. Since dry-run rolls back, "
                "notifications will NOT be sent.",
                False,
            )
        )

    return [
        NonRollbackableWarning(
            operation=operation,
            message=message,
            statement_index=statement_index,
            line_number=line_number,
            must_skip=must_skip,
        )
        for operation, message, must_skip in found
    ]


def has_must_skip_warning(warnings: Sequence[NonRollbackableWarning]) -> bool:
    return any(warning.must_skip for warning in warnings)


def get_skip_reason(warnings: Sequence[NonRollbackableWarning]) -> str:
    return "; ".join(warning.message for warning in warnings if warning.must_skip)


def _optional_str(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def extract_dry_run_error(exc: BaseException) -> DryRunError:
    """Capture every diagnostic field a PostgreSQL error carries."""
    message = getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
    return DryRunError(
        message=str(message),
        code=_optional_str(getattr(exc, "sqlstate", None)),
        severity=_optional_str(getattr(exc, "severity", None)),
        detail=_optional_str(getattr(exc, "detail", None)),
        hint=_optional_str(getattr(exc, "hint", None)),
        internal_query=_optional_str(getattr(exc, "internal_query", None)),
        where=_optional_str(getattr(exc, "context", None)),
        schema_name=_optional_str(getattr(exc, "schema_name", None)),
        table=_optional_str(getattr(exc, "table_name", None)),
        column=_optional_str(getattr(exc, "column_name", None)),
        data_type=_optional_str(getattr(exc, "data_type_name", None)),
        constraint=_optional_str(getattr(exc, "constraint_name", None)),
        file=_optional_str(getattr(exc, "server_source_filename", None)),
        line=_optional_str(getattr(exc, "server_source_line", None)),
        routine=_optional_str(getattr(exc, "server_source_function", None)),
        position=_optional_int(getattr(exc, "position", None)),
        internal_position=_optional_int(getattr(exc, "internal_position", None)),
    )


class DryRunTransaction:
    """Run statements inside one transaction that is always rolled back.

    Each statement runs under a savepoint so a failing statement does not abort
    the statements after it.
    """

    def __init__(self, conn: Any) -> None:
        """Wrap an asyncpg-like connection."""
        self._conn = conn
        self._began = False
        self.rolled_back = False

    async def __aenter__(self) -> "DryRunTransaction":
        await self._conn.execute("BEGIN")
        self._began = True
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> bool:
        if not self._began:
            return False
        try:
            await self._conn.execute("ROLLBACK")
        except Exception as rollback_exc:
            if exc_val is None:
                raise
            logger.warning("Dry-run rollback failed after error: %s", rollback_exc)
        else:
            self.rolled_back = True
        return False

    async def execute(self, sql: str) -> QueryResult:
        """Execute one statement; on failure only that statement is undone."""
        await self._conn.execute(f"SAVEPOINT {_SAVEPOINT}")
        try:
            result = await run_statement(self._conn, sql)
        except Exception:
            await self._conn.execute(f"ROLLBACK TO SAVEPOINT {_SAVEPOINT}")
            raise
        await self._conn.execute(f"RELEASE SAVEPOINT {_SAVEPOINT}")
        return result
