"""Finite-state SQL lexer shared by the statement splitter and safety checks.

The scanner walks the input exactly once, one character at a time, and never
backtracks. It understands the PostgreSQL lexical states that can hide a
statement terminator or a keyword:

- single-quoted strings (``''`` is an escaped quote, ``E'..'`` honours backslashes)
- double-quoted identifiers (``""`` is an escaped quote)
- line comments (``--`` up to the end of the line)
- block comments (``/* ... */``, closed by the first ``*/``; they do not nest)
- dollar-quoted strings (``$$ ... $$`` or ``$tag$ ... $tag$``)

Unterminated strings and comments run to the end of the input.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import List


class LexState(enum.Enum):
    """Scanner states."""

    CODE = "code"
    SINGLE_QUOTE = "single_quote"
    DOUBLE_QUOTE = "double_quote"
    LINE_COMMENT = "line_comment"
    BLOCK_COMMENT = "block_comment"
    DOLLAR_QUOTE = "dollar_quote"


class SegmentKind(str, enum.Enum):
    """Kinds of contiguous source regions produced by the scanner."""

    CODE = "code"
    STRING = "string"
    QUOTED_IDENTIFIER = "quoted_identifier"
    COMMENT = "comment"
    DOLLAR_STRING = "dollar_string"


class TokenKind(str, enum.Enum):
    """Kinds of tokens derived from code segments."""

    WORD = "word"
    IDENTIFIER = "identifier"
    LITERAL = "literal"
    NUMBER = "number"
    PUNCT = "punct"


@dataclass(frozen=True)
class Segment:
    """A contiguous region of source text in a single lexical state."""

    kind: SegmentKind
    text: str
    start: int
    line: int

    @property
    def end(self) -> int:
        return self.start + len(self.text)


@dataclass(frozen=True)
class Token:
    """A lexical token.

    ``value`` is upper-cased for words, unquoted for quoted identifiers, and the
    raw text otherwise. ``start``/``end`` are offsets into the original input.
    """

    kind: TokenKind
    value: str
    start: int
    end: int


_STATE_TO_KIND = {
    LexState.CODE: SegmentKind.CODE,
    LexState.SINGLE_QUOTE: SegmentKind.STRING,
    LexState.DOUBLE_QUOTE: SegmentKind.QUOTED_IDENTIFIER,
    LexState.LINE_COMMENT: SegmentKind.COMMENT,
    LexState.BLOCK_COMMENT: SegmentKind.COMMENT,
    LexState.DOLLAR_QUOTE: SegmentKind.DOLLAR_STRING,
}


def _is_identifier_char(ch: str) -> bool:
    return ch.isalnum() or ch == "_" or ch == "$"


def _match_dollar_tag(sql: str, i: int) -> str:
    """Return the dollar-quote opening tag starting at ``i``, or an empty string."""
    if i > 0 and _is_identifier_char(sql[i - 1]):
        # "$" inside an identifier such as ``a$b`` never opens a dollar quote.
        return ""
    n = len(sql)
    j = i + 1
    if j < n and (sql[j].isalpha() or sql[j] == "_"):
        j += 1
        while j < n and (sql[j].isalnum() or sql[j] == "_"):
            j += 1
    if j < n and sql[j] == "$":
        return sql[i : j + 1]
    return ""


class SqlLexer:
    """Single-pass scanner splitting SQL text into typed segments."""

    def __init__(self, sql: str) -> None:
        self._sql = sql if isinstance(sql, str) else ""

    def segments(self) -> List[Segment]:
        """Scan the input and return its segments in source order."""
        sql = self._sql
        n = len(sql)
        segments: List[Segment] = []

        state = LexState.CODE
        start = 0
        start_line = 1
        line = 1
        tag = ""
        backslash_escapes = False
        i = 0

        while i < n:
            ch = sql[i]
            nxt = sql[i + 1] if i + 1 < n else ""

            if state is LexState.CODE:
                next_state = None
                width = 1
                if ch == "'":
                    next_state = LexState.SINGLE_QUOTE
                    backslash_escapes = i > 0 and sql[i - 1] in "eE" and (
                        i < 2 or not _is_identifier_char(sql[i - 2])
                    )
                elif ch == '"':
                    next_state = LexState.DOUBLE_QUOTE
                elif ch == "-" and nxt == "-":
                    next_state = LexState.LINE_COMMENT
                    width = 2
                elif ch == "/" and nxt == "*":
                    next_state = LexState.BLOCK_COMMENT
                    width = 2
                elif ch == "$":
                    tag = _match_dollar_tag(sql, i)
                    if tag:
                        next_state = LexState.DOLLAR_QUOTE
                        width = len(tag)

                if next_state is None:
                    if ch == "\n":
                        line += 1
                    i += 1
                    continue

                self._append(segments, state, start, i, start_line)
                state = next_state
                start = i
                start_line = line
                i += width
                continue

            if state is LexState.LINE_COMMENT:
                if ch == "\n" or ch == "\r":
                    # The line break itself belongs to the following code.
                    self._append(segments, state, start, i, start_line)
                    state = LexState.CODE
                    start = i
                    start_line = line
                    continue
                i += 1
                continue

            if state is LexState.BLOCK_COMMENT:
                if ch == "*" and nxt == "/":
                    i += 2
                    self._append(segments, state, start, i, start_line)
                    state = LexState.CODE
                    start = i
                    start_line = line
                    continue
                if ch == "\n":
                    line += 1
                i += 1
                continue

            if state is LexState.SINGLE_QUOTE or state is LexState.DOUBLE_QUOTE:
                quote = "'" if state is LexState.SINGLE_QUOTE else '"'
                if backslash_escapes and state is LexState.SINGLE_QUOTE and ch == "\\":
                    if nxt == "\n":
                        line += 1
                    i += 2
                    continue
                if ch == quote:
                    if nxt == quote:
                        i += 2
                        continue
                    i += 1
                    self._append(segments, state, start, i, start_line)
                    state = LexState.CODE
                    start = i
                    start_line = line
                    continue
                if ch == "\n":
                    line += 1
                i += 1
                continue

            # LexState.DOLLAR_QUOTE
            if ch == "$" and sql.startswith(tag, i):
                i += len(tag)
                self._append(segments, state, start, i, start_line)
                state = LexState.CODE
                start = i
                start_line = line
                continue
            if ch == "\n":
                line += 1
            i += 1

        self._append(segments, state, start, n, start_line)
        return segments

    def _append(
        self, segments: List[Segment], state: LexState, start: int, end: int, line: int
    ) -> None:
        if end > start:
            segments.append(
                Segment(kind=_STATE_TO_KIND[state], text=self._sql[start:end], start=start, line=line)
            )


def scan_segments(sql: str) -> List[Segment]:
    """Split SQL into code, string, identifier, comment and dollar-string segments."""
    return SqlLexer(sql).segments()


def tokenize(sql: str) -> List[Token]:
    """Tokenize SQL, dropping comments and whitespace.

    String literals and dollar-quoted bodies become opaque ``LITERAL`` tokens, so
    keywords inside them are never seen by callers.
    """
    tokens: List[Token] = []
    for segment in scan_segments(sql):
        if segment.kind is SegmentKind.COMMENT:
            continue
        if segment.kind in (SegmentKind.STRING, SegmentKind.DOLLAR_STRING):
            tokens.append(Token(TokenKind.LITERAL, segment.text, segment.start, segment.end))
            continue
        if segment.kind is SegmentKind.QUOTED_IDENTIFIER:
            inner = segment.text[1:-1] if segment.text.endswith('"') else segment.text[1:]
            tokens.append(
                Token(TokenKind.IDENTIFIER, inner.replace('""', '"'), segment.start, segment.end)
            )
            continue
        _tokenize_code(segment, tokens)
    return tokens


def _tokenize_code(segment: Segment, tokens: List[Token]) -> None:
    text = segment.text
    n = len(text)
    base = segment.start
    i = 0
    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
            continue
        j = i + 1
        if ch.isalpha() or ch == "_":
            while j < n and _is_identifier_char(text[j]):
                j += 1
            tokens.append(Token(TokenKind.WORD, text[i:j].upper(), base + i, base + j))
        elif ch.isdigit():
            while j < n and (text[j].isalnum() or text[j] == "."):
                j += 1
            tokens.append(Token(TokenKind.NUMBER, text[i:j], base + i, base + j))
        else:
            tokens.append(Token(TokenKind.PUNCT, ch, base + i, base + j))
        i = j
