"""Parsing of INSERT/UPDATE/DELETE statements for previews and dry-runs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from common.sql.lexer import Token, TokenKind, tokenize

MUTATION_TYPES = ("INSERT", "UPDATE", "DELETE")

MUTATION_REQUIRED_MESSAGE = "SQL must be an INSERT, UPDATE, or DELETE statement"

# Words that end a target table reference instead of naming its alias.
_ALIAS_STOP_WORDS = {
    "SET",
    "WHERE",
    "USING",
    "RETURNING",
    "VALUES",
    "SELECT",
    "DEFAULT",
    "OVERRIDING",
    "ON",
    "WITH",
    "TABLE",
}


@dataclass(frozen=True)
class MutationTarget:
    """What a data-modifying statement changes.

    ``table`` keeps the table reference exactly as written so it can be reused
    in follow-up queries; ``where_clause`` is the top-level WHERE condition.
    """

    mutation_type: str
    table: Optional[str] = None
    alias: Optional[str] = None
    where_clause: Optional[str] = None
    has_returning: bool = False

    @property
    def table_reference(self) -> Optional[str]:
        if self.table is None:
            return None
        return f"{self.table} {self.alias}" if self.alias else self.table

    def sample_query(self, limit: int) -> str:
        return f"SELECT * FROM {self._filtered_source()} LIMIT {int(limit)}"

    def count_query(self) -> str:
        return f"SELECT COUNT(*) AS count FROM {self._filtered_source()}"

    def _filtered_source(self) -> str:
        source = self.table_reference or ""
        if self.where_clause:
            return f"{source} WHERE {self.where_clause}"
        return source


def _is_word(token: Token, *values: str) -> bool:
    return token.kind is TokenKind.WORD and (not values or token.value in values)


def _is_punct(token: Token, value: str) -> bool:
    return token.kind is TokenKind.PUNCT and token.value == value


def _depths(tokens: List[Token]) -> List[int]:
    """Parenthesis depth of each token; parentheses report the outer depth."""
    depths = []
    depth = 0
    for token in tokens:
        if _is_punct(token, ")"):
            depth = max(0, depth - 1)
        depths.append(depth)
        if _is_punct(token, "("):
            depth += 1
    return depths


def _find_main_verb(tokens: List[Token], depths: List[int]) -> Optional[int]:
    if not tokens or not _is_word(tokens[0]):
        return None
    if tokens[0].value in MUTATION_TYPES:
        return 0
    if tokens[0].value != "WITH":
        return None
    for idx, token in enumerate(tokens):
        if depths[idx] != 0 or not _is_word(token):
            continue
        if token.value in ("INSERT", "DELETE"):
            return idx
        if token.value == "UPDATE" and not _is_word(tokens[idx - 1], "FOR", "KEY", "NO"):
            return idx
        if token.value == "SELECT":
            return None
    return None


def detect_mutation_type(sql: str) -> Optional[str]:
    """Return INSERT, UPDATE or DELETE for data-modifying statements, including
    ones led by a WITH clause; None for anything else."""
    tokens = tokenize(sql)
    idx = _find_main_verb(tokens, _depths(tokens))
    return tokens[idx].value if idx is not None else None


def _read_table(sql: str, tokens: List[Token], idx: int) -> Tuple[Optional[str], int]:
    if idx < len(tokens) and _is_word(tokens[idx], "ONLY"):
        idx += 1
    if idx >= len(tokens) or tokens[idx].kind not in (TokenKind.WORD, TokenKind.IDENTIFIER):
        return None, idx
    first = tokens[idx]
    last = first
    idx += 1
    while (
        idx + 1 < len(tokens)
        and _is_punct(tokens[idx], ".")
        and tokens[idx + 1].kind in (TokenKind.WORD, TokenKind.IDENTIFIER)
    ):
        last = tokens[idx + 1]
        idx += 2
    return sql[first.start : last.end], idx


def _read_alias(sql: str, tokens: List[Token], idx: int, require_as: bool) -> Optional[str]:
    if idx >= len(tokens):
        return None
    if _is_word(tokens[idx], "AS"):
        idx += 1
    elif require_as:
        return None
    if idx >= len(tokens):
        return None
    token = tokens[idx]
    if token.kind is TokenKind.IDENTIFIER or (
        _is_word(token) and token.value not in _ALIAS_STOP_WORDS
    ):
        return sql[token.start : token.end]
    return None


def parse_mutation(sql: str) -> Optional[MutationTarget]:
    """Parse the target table, alias, WHERE clause and RETURNING presence.

    Only top-level clauses are considered, so subqueries and CTE bodies never
    contribute a WHERE clause. Returns None for non-mutations.
    """
    tokens = tokenize(sql)
    depths = _depths(tokens)
    verb_idx = _find_main_verb(tokens, depths)
    if verb_idx is None:
        return None
    mutation_type = tokens[verb_idx].value

    table: Optional[str] = None
    alias: Optional[str] = None
    idx = verb_idx + 1
    if mutation_type == "UPDATE":
        table, idx = _read_table(sql, tokens, idx)
        alias = _read_alias(sql, tokens, idx, require_as=False) if table else None
    else:
        keyword = "INTO" if mutation_type == "INSERT" else "FROM"
        if idx < len(tokens) and _is_word(tokens[idx], keyword):
            table, idx = _read_table(sql, tokens, idx + 1)
            if table:
                alias = _read_alias(sql, tokens, idx, require_as=mutation_type == "INSERT")

    where_idx: Optional[int] = None
    returning_idx: Optional[int] = None
    for pos in range(verb_idx + 1, len(tokens)):
        if depths[pos] != 0:
            continue
        if _is_word(tokens[pos], "WHERE"):
            where_idx = pos
        elif _is_word(tokens[pos], "RETURNING"):
            returning_idx = pos

    where_clause: Optional[str] = None
    if where_idx is not None:
        if returning_idx is not None and returning_idx > where_idx:
            end = tokens[returning_idx].start
        else:
            end = next(
                token.end for token in reversed(tokens) if not _is_punct(token, ";")
            )
        where_clause = sql[tokens[where_idx].end : end].strip() or None

    return MutationTarget(
        mutation_type=mutation_type,
        table=table,
        alias=alias,
        where_clause=where_clause,
        has_returning=returning_idx is not None,
    )


def with_returning(sql: str) -> str:
    """Append ``RETURNING *`` after the statement's last token.

    Trailing semicolons and comments are dropped so the clause never ends up
    inside a line comment.
    """
    tokens = tokenize(sql)
    while tokens and _is_punct(tokens[-1], ";"):
        tokens.pop()
    if not tokens:
        raise ValueError(MUTATION_REQUIRED_MESSAGE)
    return f"{sql[: tokens[-1].end].strip()} RETURNING *"
