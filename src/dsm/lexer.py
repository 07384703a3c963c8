# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Delphi tokenizer producing positioned tokens and comments."""

import logging
from dataclasses import dataclass
from typing import Literal

logger = logging.getLogger(__name__)

TokenKind = Literal[
    "identifier",
    "keyword",
    "number",
    "string",
    "symbol",
    "comment",
    "directive",
    "eof",
]

RESERVED_WORDS: frozenset[str] = frozenset(
    {
        "and", "array", "as", "asm", "begin", "case", "class", "const",
        "constructor", "destructor", "dispinterface", "div", "do", "downto",
        "else", "end", "except", "exports", "file", "finalization", "finally",
        "for", "function", "goto", "if", "implementation", "in", "inherited",
        "initialization", "inline", "interface", "is", "label", "library",
        "mod", "nil", "not", "object", "of", "or", "packed", "procedure",
        "program", "property", "raise", "record", "repeat", "resourcestring",
        "set", "shl", "shr", "string", "then", "threadvar", "to", "try",
        "type", "unit", "until", "uses", "var", "while", "with", "xor",
    }
)  # fmt: skip

_MULTI_CHAR_SYMBOLS: tuple[str, ...] = (":=", "..", "<=", ">=", "<>", "@@")
_SINGLE_CHAR_SYMBOLS: str = "+-*/=<>[]().,;:^@&"


class DelphiSyntaxError(RuntimeError):
    """Represent a lexical or syntactic error at a source position."""

    def __init__(self, message: str, line: int, column: int) -> None:
        """Initialize error with position.

        Args:
            message: Human readable description.
            line: 1-based source line.
            column: 1-based source column.
        """
        super().__init__(f"{message} at {line}:{column}")
        self.line = line
        self.column = column


@dataclass(frozen=True)
class Token:
    """Represent one lexical token.

    Attributes:
        kind: Token category.
        text: Exact source text of the token.
        line: Start line (1-based).
        column: Start column (1-based).
        end_line: Line of the last character of the token.
    """

    kind: TokenKind
    text: str
    line: int
    column: int
    end_line: int

    @property
    def value(self) -> str:
        """Return the case-folded text used for keyword matching."""
        return self.text.lower()


class _Scanner:
    """Walk source text character by character while tracking position."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0
        self.line = 1
        self.column = 1

    def peek(self, offset: int = 0) -> str:
        """Return the character ``offset`` ahead, or an empty string past the end."""
        index = self.pos + offset
        if index < len(self.text):
            return self.text[index]
        return ""

    def startswith(self, prefix: str) -> bool:
        return self.text.startswith(prefix, self.pos)

    def advance(self, count: int = 1) -> str:
        """Consume ``count`` characters and return them, updating line and column."""
        consumed = self.text[self.pos : self.pos + count]
        for char in consumed:
            if char == "\n":
                self.line += 1
                self.column = 1
            else:
                self.column += 1
        self.pos += len(consumed)
        return consumed

    def at_end(self) -> bool:
        return self.pos >= len(self.text)


def tokenize(text: str) -> list[Token]:
    """Split Delphi source text into tokens, comments included.

    Args:
        text: Source text, typically already preprocessed.

    Returns:
        Tokens in source order, terminated by an ``eof`` token.

    Raises:
        DelphiSyntaxError: If a comment or string literal is unterminated.
    """
    scanner = _Scanner(text)
    tokens: list[Token] = []
    while True:
        while not scanner.at_end() and scanner.peek().isspace():
            scanner.advance()
        if scanner.at_end():
            tokens.append(Token("eof", "", scanner.line, scanner.column, scanner.line))
            return tokens
        tokens.append(_next_token(scanner))


def _next_token(scanner: _Scanner) -> Token:
    """Scan one token starting at a non-space character.

    Raises:
        DelphiSyntaxError: If no token starts at the current character.
    """
    line, column = scanner.line, scanner.column
    char = scanner.peek()

    if scanner.startswith("//"):
        end = scanner.text.find("\n", scanner.pos)
        length = (len(scanner.text) if end < 0 else end) - scanner.pos
        text = scanner.advance(length).rstrip("\r")
        return Token("comment", text, line, column, line)
    if char == "{":
        return _block_comment(scanner, "}", line, column)
    if scanner.startswith("(*"):
        return _block_comment(scanner, "*)", line, column)
    if char == "'" or char == "#":
        return _string_literal(scanner, line, column)
    if char.isdigit() or (char == "$" and _is_hex(scanner.peek(1))):
        return _number(scanner, line, column)
    if char == "%" and scanner.peek(1) in ("0", "1"):
        start = scanner.pos
        scanner.advance()
        while scanner.peek() in ("0", "1", "_"):
            scanner.advance()
        return Token("number", scanner.text[start : scanner.pos], line, column, line)
    if char == "&" and (scanner.peek(1).isalpha() or scanner.peek(1) == "_"):
        scanner.advance()
        start = scanner.pos
        _consume_identifier(scanner)
        return Token("identifier", scanner.text[start : scanner.pos], line, column, line)
    if char.isalpha() or char == "_":
        start = scanner.pos
        _consume_identifier(scanner)
        text = scanner.text[start : scanner.pos]
        kind: TokenKind = "keyword" if text.lower() in RESERVED_WORDS else "identifier"
        return Token(kind, text, line, column, line)
    for symbol in _MULTI_CHAR_SYMBOLS:
        if scanner.startswith(symbol):
            scanner.advance(len(symbol))
            return Token("symbol", symbol, line, column, line)
    if char in _SINGLE_CHAR_SYMBOLS:
        scanner.advance()
        return Token("symbol", char, line, column, line)
    raise DelphiSyntaxError(f"Unexpected character {char!r}", line, column)


def _is_hex(char: str) -> bool:
    return bool(char) and char in "0123456789abcdefABCDEF"


def _consume_identifier(scanner: _Scanner) -> None:
    """Advance over identifier characters."""
    while scanner.peek() and (scanner.peek().isalnum() or scanner.peek() == "_"):
        scanner.advance()


def _block_comment(scanner: _Scanner, closer: str, line: int, column: int) -> Token:
    """Scan a ``{...}`` or ``(*...*)`` comment; ``$`` bodies become directives."""
    start = scanner.pos
    end = scanner.text.find(closer, start + 1 if closer == "}" else start + 2)
    if end < 0:
        raise DelphiSyntaxError("Unterminated comment", line, column)
    text = scanner.advance(end + len(closer) - start)
    opener_length = 1 if closer == "}" else 2
    kind: TokenKind = "directive" if text[opener_length : opener_length + 1] == "$" else "comment"
    return Token(kind, text, line, column, scanner.line)


def _string_literal(scanner: _Scanner, line: int, column: int) -> Token:
    """Scan quoted strings and ``#`` character codes as one literal."""
    start = scanner.pos
    while scanner.peek() in ("'", "#") and scanner.peek():
        if scanner.peek() == "#":
            scanner.advance()
            if scanner.peek() == "$":
                scanner.advance()
                while _is_hex(scanner.peek()):
                    scanner.advance()
            else:
                if not scanner.peek().isdigit():
                    raise DelphiSyntaxError("Malformed character code", line, column)
                while scanner.peek().isdigit():
                    scanner.advance()
            continue
        scanner.advance()
        while True:
            current = scanner.peek()
            if not current or current == "\n":
                raise DelphiSyntaxError("Unterminated string literal", line, column)
            scanner.advance()
            if current == "'":
                if scanner.peek() == "'":
                    scanner.advance()
                    continue
                break
    return Token("string", scanner.text[start : scanner.pos], line, column, line)


def _number(scanner: _Scanner, line: int, column: int) -> Token:
    """Scan decimal, hexadecimal and floating point literals."""
    start = scanner.pos
    if scanner.peek() == "$":
        scanner.advance()
        while _is_hex(scanner.peek()) or scanner.peek() == "_":
            scanner.advance()
        return Token("number", scanner.text[start : scanner.pos], line, column, line)
    while scanner.peek().isdigit() or scanner.peek() == "_":
        scanner.advance()
    if scanner.peek() == "." and scanner.peek(1).isdigit():
        scanner.advance()
        while scanner.peek().isdigit():
            scanner.advance()
    if scanner.peek() in ("e", "E") and (
        scanner.peek(1).isdigit()
        or (scanner.peek(1) in ("+", "-") and scanner.peek(2).isdigit())
    ):
        scanner.advance(2)
        while scanner.peek().isdigit():
            scanner.advance()
    return Token("number", scanner.text[start : scanner.pos], line, column, line)
