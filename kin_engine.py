from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)


# Errors raised by every stage. Spanned errors point back into the source text,
# NoResult is a normal negative answer and carries no position.
class KinshipError(Exception):
    """Base error for the kinship query engine."""

class SpannedError(KinshipError):
    def __init__(self, span: "Span", message: str):
        super().__init__(message)
        self.span = span
        self.message = message

class LexError(SpannedError):
    pass

class UnexpectedToken(SpannedError):
    def __init__(self, expected: Optional["TokenKind"], span: "Span", message: str):
        super().__init__(span, message)
        self.expected = expected

class UnexpectedEnd(SpannedError):
    def __init__(self, expected: "TokenKind", span: "Span", message: str):
        super().__init__(span, message)
        self.expected = expected

    @property
    def offset(self) -> int:
        return self.span.start

class RecordError(SpannedError):
    pass

class RecordSyntaxError(RecordError):
    pass

class UnknownCharacterError(RecordError):
    pass

class NoResult(KinshipError):
    def __init__(self, first: Optional[str] = None, second: Optional[str] = None):
        super().__init__("no result found")
        self.first = first
        self.second = second

class RelationFileError(KinshipError):
    pass


#############################
# Alphabet and spans
#############################

ROLE_CHARS = frozenset("爸妈爷奶姑父母舅妗子伯叔婶哥妹姐弟姥姨")
GENDER_SUFFIX_CHARS = frozenset("男女")
# Record files may spell out gendered roles the query grammar does not accept.
RECORD_NAME_CHARS = ROLE_CHARS | GENDER_SUFFIX_CHARS

# Characters that end a line, for both record lexing and diagnostics.
LINE_BREAKS = frozenset("\n\r\x85\u2028")
_LINE_BREAK_RE = re.compile("\r\n|[\n\r\x85\u2028]")

LINK_CHAR = "的"
IS_CHAR = "是"
WHAT_HEAD = "什"
WHAT_TAIL = "么"

# Every role character is a CJK ideograph, 3 bytes in UTF-8. Strict lexing
# checks this per character instead of assuming it when computing spans.
IDEOGRAPH_BYTES = 3


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))

def display_width(text: str) -> int:
    """Terminal columns taken by ``text``; wide and fullwidth characters count 2."""
    return sum(2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1 for ch in text)


@dataclass(frozen=True)
class Span:
    """Where a token sits in its source: UTF-8 byte range plus display columns.

    ``column`` counts display columns from the start of the token's line.
    Spans are diagnostics only; tokens are never compared by span.
    """
    start: int
    length: int
    column: int = 0
    width: int = 1

    @property
    def end(self) -> int:
        return self.start + self.length

    @property
    def end_column(self) -> int:
        return self.column + self.width

    @classmethod
    def after(cls, other: Optional["Span"]) -> "Span":
        """A one-column marker placed right after ``other`` (or at offset 0)."""
        if other is None:
            return cls(0, 0, 0, 1)
        return cls(other.end, 0, other.end_column, 1)


class _Scanner:
    """Codepoint cursor that keeps byte offset and display column in step."""
    def __init__(self, source: str):
        self.s = source
        self.i = 0
        self.byte = 0
        self.col = 0

    def at_end(self) -> bool:
        return self.i >= len(self.s)

    def peek(self) -> str:
        return self.s[self.i] if self.i < len(self.s) else ""

    def bump(self) -> str:
        ch = self.s[self.i]
        self.i += 1
        self.byte += byte_length(ch)
        self.col = 0 if ch in LINE_BREAKS else self.col + display_width(ch)
        return ch

    def eat_while(self, pred) -> None:
        while not self.at_end() and pred(self.peek()):
            self.bump()

    def mark(self) -> Tuple[int, int, int]:
        return (self.i, self.byte, self.col)

    def text_from(self, mark: Tuple[int, int, int]) -> str:
        return self.s[mark[0]:self.i]

    def span_from(self, mark: Tuple[int, int, int]) -> Span:
        i, b, c = mark
        return Span(b, self.byte - b, c, display_width(self.s[i:self.i]))


#############################
# Query lexer
#############################

class TokenKind(Enum):
    LINK = "的"
    IS = "是"
    WHAT = "什么"
    IDENT = "role"


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    span: Span
    text: str

    def __repr__(self):
        if self.kind is TokenKind.IDENT:
            return f"Ident({self.text})"
        return self.kind.name.title()


def lex_query(source: str, strict: bool = True) -> List[Token]:
    """Split a query such as ``爸爸的爸爸是什么`` into tokens.

    Role names are the longest run of role characters. In non-strict mode a
    line break ends the query; in strict mode the whole string is scanned and
    any character that is not a 3-byte ideograph is rejected.
    """
    sc = _Scanner(source)
    tokens: List[Token] = []
    while not sc.at_end():
        start = sc.mark()
        ch = sc.peek()
        if not strict and ch in "\r\n":
            logger.debug("query lexing stopped at line break, byte %d", sc.byte)
            break
        sc.bump()
        if strict and byte_length(ch) != IDEOGRAPH_BYTES:
            raise LexError(sc.span_from(start), f"character {ch!r} is not a 3-byte ideograph")
        if ch == LINK_CHAR:
            tokens.append(Token(TokenKind.LINK, sc.span_from(start), ch)); continue
        if ch == IS_CHAR:
            tokens.append(Token(TokenKind.IS, sc.span_from(start), ch)); continue
        if ch == WHAT_HEAD:
            nxt = sc.peek()
            if not nxt or (not strict and nxt in "\r\n"):
                raise LexError(sc.span_from(start), f"must not end with {WHAT_HEAD}")
            sc.bump()
            if nxt != WHAT_TAIL:
                raise LexError(sc.span_from(start), f"expected {WHAT_TAIL} after {WHAT_HEAD}")
            tokens.append(Token(TokenKind.WHAT, sc.span_from(start), sc.text_from(start))); continue
        if ch in ROLE_CHARS:
            sc.eat_while(lambda c: c in ROLE_CHARS)
            tokens.append(Token(TokenKind.IDENT, sc.span_from(start), sc.text_from(start))); continue
        raise LexError(sc.span_from(start), f"undefined character {ch!r}")
    logger.debug("lexed %d query tokens from %r", len(tokens), source)
    return tokens


#############################
# Relation store
#############################

RelationKey = Tuple[str, str]

# Built-in relations every store starts from.
SEED_RELATIONS: Tuple[Tuple[RelationKey, str], ...] = (
    (("爸爸", "爸爸"), "爷爷"),
    (("爸爸", "妈妈"), "奶奶"),
    (("爸爸", "老大"), "大哥或自己"),
    (("妈妈", "爸爸"), "姥爷"),
    (("妈妈", "妈妈"), "姥姥"),
)


@dataclass(frozen=True)
class RelationRecord:
    """One ``first > second = result`` line of a relation file."""
    first: str
    second: str
    result: str

    @property
    def key(self) -> RelationKey:
        return (self.first, self.second)


class RelationStore:
    """Exact-match mapping from an ordered pair of roles to the resulting role.

    There is no inference: ``(哥哥, 儿子)`` resolves only if that exact pair was
    seeded, loaded or defined. Inserting an existing key overwrites it.
    Not safe to share between threads.
    """
    def __init__(self, entries: Optional[Iterable[Tuple[RelationKey, str]]] = None):
        self._relations: Dict[RelationKey, str] = {}
        for key, result in entries or ():
            self._relations[key] = result

    @classmethod
    def seeded(cls) -> "RelationStore":
        return cls(SEED_RELATIONS)

    def merge(self, records: Iterable[RelationRecord]) -> int:
        count = 0
        for rec in records:
            self._relations[rec.key] = rec.result
            count += 1
        logger.debug("merged %d relation records, store now holds %d", count, len(self))
        return count

    def define(self, first: str, second: str, result: str) -> None:
        previous = self._relations.get((first, second))
        self._relations[(first, second)] = result
        if previous is not None and previous != result:
            logger.info("redefined %s的%s: %s -> %s", first, second, previous, result)
        else:
            logger.info("defined %s的%s是%s", first, second, result)

    def lookup(self, first: str, second: str) -> Optional[str]:
        return self._relations.get((first, second))

    def items(self) -> Iterator[Tuple[RelationKey, str]]:
        return iter(self._relations.items())

    def to_records(self) -> List[RelationRecord]:
        return [RelationRecord(f, s, r) for (f, s), r in self._relations.items()]

    def __len__(self) -> int:
        return len(self._relations)

    def __contains__(self, key: object) -> bool:
        return key in self._relations


#############################
# Query parser
#############################

@dataclass(frozen=True)
class Appellation:
    """A resolved query: the two roles asked about and the kinship term found."""
    first: str
    second: str
    result: str

    def __str__(self):
        return f"{self.first}{LINK_CHAR}{self.second}{IS_CHAR}{self.result}"


@dataclass(frozen=True)
class Query:
    first: str
    second: str

@dataclass(frozen=True)
class Define:
    first: str
    second: str
    result: str
    result_span: Span

Statement = Union[Query, Define]


class TokenCursor:
    """Index over a materialized token list with one token of lookahead.

    ``last`` is the span of the most recently consumed token, used to place
    errors when the input runs out.
    """
    def __init__(self, tokens: Iterable[Token]):
        self.tokens = list(tokens)
        self.pos = 0
        self.last: Optional[Span] = None

    def peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def advance(self) -> Optional[Token]:
        tok = self.peek()
        if tok is not None:
            self.pos += 1
            self.last = tok.span
        return tok

    def end_span(self) -> Span:
        return Span.after(self.last)

    def expect(self, kind: TokenKind, missing: str, mismatch: str) -> Token:
        tok = self.peek()
        if tok is None:
            raise UnexpectedEnd(kind, self.end_span(), missing)
        if tok.kind is not kind:
            raise UnexpectedToken(kind, tok.span, mismatch)
        self.advance()
        return tok


def parse_statement(tokens: Iterable[Token]) -> Statement:
    """Match ``role 的 role 是 (什么 | role)``.

    A trailing ``什么`` makes a Query; a trailing role name makes a Define.
    Nothing may follow the fifth token.
    """
    cur = TokenCursor(tokens)
    first = cur.expect(TokenKind.IDENT, "first role not found", "expected a role name")
    cur.expect(TokenKind.LINK, f"missing {LINK_CHAR}", f"missing {LINK_CHAR}")
    second = cur.expect(TokenKind.IDENT, "second role not found", "expected a role name")
    cur.expect(TokenKind.IS, f"missing {IS_CHAR}", f"missing {IS_CHAR}")

    tail = cur.peek()
    if tail is None:
        raise UnexpectedEnd(TokenKind.WHAT, cur.end_span(), f"expected {WHAT_HEAD}{WHAT_TAIL}")
    if tail.kind is TokenKind.WHAT:
        statement: Statement = Query(first.text, second.text)
    elif tail.kind is TokenKind.IDENT:
        statement = Define(first.text, second.text, tail.text, tail.span)
    else:
        raise UnexpectedToken(TokenKind.WHAT, tail.span, f"expected {WHAT_HEAD}{WHAT_TAIL}")
    cur.advance()

    extra = cur.peek()
    if extra is not None:
        raise UnexpectedToken(None, extra.span, "unexpected trailing input")
    return statement


def resolve(statement: Statement, store: RelationStore, allow_define: bool = False) -> Appellation:
    # definitions are only honoured when the caller opts in; otherwise the
    # trailing role is reported where 什么 was expected
    if isinstance(statement, Define):
        if not allow_define:
            raise UnexpectedToken(TokenKind.WHAT, statement.result_span, f"expected {WHAT_HEAD}{WHAT_TAIL}")
        store.define(statement.first, statement.second, statement.result)

    result = store.lookup(statement.first, statement.second)
    if result is None:
        logger.debug("no relation for (%s, %s)", statement.first, statement.second)
        raise NoResult(statement.first, statement.second)
    return Appellation(statement.first, statement.second, result)


def query(source: str, store: RelationStore, allow_define: bool = False, strict: bool = True) -> Appellation:
    """Lex, parse and resolve one query string against ``store``."""
    return resolve(parse_statement(lex_query(source, strict=strict)), store, allow_define=allow_define)


#############################
# Record lexer
#############################

class RecordTokenKind(Enum):
    WHITESPACE = "whitespace"
    DELIMITER = "delimiter"
    COMMENT = "comment"
    LINK = ">"
    IS = "="
    NAME = "name"
    UNKNOWN = "unknown"
    EOF = "eof"


@dataclass(frozen=True)
class RecordToken:
    kind: RecordTokenKind
    span: Span
    text: str = ""


_WHITESPACE = frozenset("\t\x0b\x0c \u200e\u200f\u2029")
_DELIMITERS = LINE_BREAKS


def lex_records(source: str) -> List[RecordToken]:
    """Tokenize relation-file text. Never fails; bad characters become UNKNOWN."""
    sc = _Scanner(source)
    tokens: List[RecordToken] = []
    while not sc.at_end():
        start = sc.mark()
        ch = sc.bump()
        if ch == "#":
            sc.eat_while(lambda c: c != "\n")
            if sc.peek() == "\n":
                sc.bump()
            kind = RecordTokenKind.COMMENT
        elif ch in _WHITESPACE:
            sc.eat_while(lambda c: c in _WHITESPACE)
            kind = RecordTokenKind.WHITESPACE
        elif ch in _DELIMITERS:
            sc.eat_while(lambda c: c in _DELIMITERS)
            kind = RecordTokenKind.DELIMITER
        elif ch == ">":
            kind = RecordTokenKind.LINK
        elif ch == "=":
            kind = RecordTokenKind.IS
        elif ch in RECORD_NAME_CHARS:
            sc.eat_while(lambda c: c in RECORD_NAME_CHARS)
            kind = RecordTokenKind.NAME
        else:
            kind = RecordTokenKind.UNKNOWN
        tokens.append(RecordToken(kind, sc.span_from(start), sc.text_from(start)))
    end = sc.mark()
    tokens.append(RecordToken(RecordTokenKind.EOF, sc.span_from(end)))
    return tokens


#############################
# Record parser
#############################

class _RecordCursor:
    def __init__(self, tokens: List[RecordToken]):
        self.tokens = tokens
        self.pos = 0

    def peek(self) -> RecordToken:
        # EOF is sticky
        return self.tokens[min(self.pos, len(self.tokens) - 1)]

    def advance(self) -> RecordToken:
        tok = self.peek()
        if tok.kind is not RecordTokenKind.EOF:
            self.pos += 1
        return tok

    def skip_whitespace(self) -> None:
        if self.peek().kind is RecordTokenKind.WHITESPACE:
            self.advance()

    def expect(self, kind: RecordTokenKind, message: str) -> RecordToken:
        self.skip_whitespace()
        tok = self.peek()
        if tok.kind is RecordTokenKind.UNKNOWN:
            raise UnknownCharacterError(tok.span, f"unknown character {tok.text!r}")
        if tok.kind is not kind:
            raise RecordSyntaxError(tok.span, message)
        return self.advance()


def parse_records(source: str) -> List[RelationRecord]:
    """Parse ``first > second = result`` statements, one per line.

    ``#`` starts a comment that runs to the end of the line. Any error aborts
    the whole text; no partial list is returned.
    """
    cursor = _RecordCursor(lex_records(source))
    records: List[RelationRecord] = []
    while True:
        tok = cursor.advance()
        if tok.kind in (RecordTokenKind.COMMENT, RecordTokenKind.WHITESPACE):
            continue
        if tok.kind is RecordTokenKind.NAME:
            cursor.expect(RecordTokenKind.LINK, "expected '>'")
            second = cursor.expect(RecordTokenKind.NAME, "second role not found")
            cursor.expect(RecordTokenKind.IS, "expected '='")
            result = cursor.expect(RecordTokenKind.NAME, "result role not found")
            records.append(RelationRecord(tok.text, second.text, result.text))
            cursor.skip_whitespace()
            if cursor.peek().kind is RecordTokenKind.DELIMITER:
                cursor.advance()
            continue
        if tok.kind is RecordTokenKind.EOF:
            break
        if tok.kind is RecordTokenKind.UNKNOWN:
            raise UnknownCharacterError(tok.span, f"unknown character {tok.text!r}")
        raise RecordSyntaxError(tok.span, "statement must start with a role name")
    return records


def records_to_mapping(records: Iterable[RelationRecord]) -> Dict[RelationKey, str]:
    return {rec.key: rec.result for rec in records}


def load_relations(path: Union[str, Path]) -> List[RelationRecord]:
    path = Path(path)
    try:
        source = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise RelationFileError(f"cannot read relation file {path}: {e}") from e
    records = parse_records(source)
    logger.info("loaded %d relation records from %s", len(records), path)
    return records


def build_store(path: Union[str, Path, None] = None, required: bool = False) -> RelationStore:
    """Seed a store and merge the relation file at ``path`` into it.

    A missing file is skipped unless ``required``. A file that fails to parse
    raises before anything is merged.
    """
    store = RelationStore.seeded()
    if path is None:
        return store
    path = Path(path)
    if not path.exists():
        if required:
            raise RelationFileError(f"relation file not found: {path}")
        logger.info("relation file %s not found, using built-in relations only", path)
        return store
    store.merge(load_relations(path))
    return store


#############################
# Diagnostics and runners
#############################

def _line_at(source: str, span: Span) -> Tuple[int, str]:
    """1-based number and text of the line holding ``span``.

    ``\\r\\n`` counts as one break; ``\\r``, NEL and U+2028 end a line on their own.
    """
    offset = len(source.encode("utf-8")[:span.start].decode("utf-8", errors="ignore"))
    number, line_start = 1, 0
    for m in _LINE_BREAK_RE.finditer(source, 0, offset):
        number += 1
        line_start = m.end()
    nxt = _LINE_BREAK_RE.search(source, offset)
    line_end = nxt.start() if nxt else len(source)
    return number, source[line_start:line_end]


def line_col(source: str, span: Span) -> Tuple[int, int]:
    """1-based line and display column of ``span`` in ``source``."""
    return _line_at(source, span)[0], span.column + 1


def render_diagnostic(source: str, span: Span, message: str) -> List[str]:
    """Source line, a caret underline under ``span`` and the message below it."""
    line = _line_at(source, span)[1]
    pad = " " * span.column
    return [line, pad + "^" * max(1, span.width), pad + message]


def run(relations_text: str, query_text: str, allow_define: bool = False) -> Appellation:
    store = RelationStore.seeded()
    store.merge(parse_records(relations_text))
    return query(query_text, store, allow_define=allow_define)
