# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Include expansion and conditional compilation for Delphi sources."""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_DIRECTIVE_NAME = re.compile(r"\s*([A-Za-z_]+)(.*)", re.DOTALL)
_CONDITION_TOKEN = re.compile(r"\w+|[()]|\S")
_SPECIAL_START = re.compile(r"['{]|//|\(\*")
_OPENING_CONDITIONALS = frozenset({"IFDEF", "IFNDEF", "IF", "IFOPT"})
_CLOSING_CONDITIONALS = frozenset({"ENDIF", "IFEND"})


class PreprocessError(RuntimeError):
    """Raised when source text cannot be read for preprocessing."""


@dataclass(frozen=True)
class PreprocessConfig:
    """Represent per-project preprocessing configuration.

    Attributes:
        include_dirs: Directories searched for include files, in order.
        defines: Active conditional symbols, upper-cased.
    """

    include_dirs: tuple[Path, ...] = ()
    defines: frozenset[str] = frozenset()

    @classmethod
    def for_project(
        cls, include_dirs: Iterable[Path], defines: Iterable[str]
    ) -> "PreprocessConfig":
        """Build a configuration with normalized symbol names."""
        return cls(
            include_dirs=tuple(Path(path) for path in include_dirs),
            defines=frozenset(symbol.strip().upper() for symbol in defines if symbol.strip()),
        )


def read_source(path: Path) -> str:
    """Read a Delphi source file as text with normalized newlines.

    Args:
        path: File to read.

    Returns:
        Decoded text. UTF-8 (with or without BOM) is tried first, then cp1252.

    Raises:
        PreprocessError: If the file cannot be read.
    """
    try:
        data = path.read_bytes()
    except OSError as exc:
        logger.warning(f"Unable to read source file (path={path} error={exc})")
        raise PreprocessError(f"Unable to read {path}: {exc}") from exc
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError:
        logger.debug(f"Falling back to cp1252 decoding (path={path})")
        text = data.decode("cp1252", errors="replace")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def preprocess(
    raw_text: str, config: PreprocessConfig, source_path: Path | None = None
) -> str:
    """Expand includes and evaluate conditional compilation blocks.

    Excluded regions and consumed directives are replaced by their newlines so
    the lines of surviving code keep their numbers.

    Args:
        raw_text: Source text to normalize.
        config: Include search path and active defines for the project.
        source_path: Path of the file the text came from; its directory is
            searched first for include files.

    Returns:
        Normalized text without conditional, include or define directives.
    """
    state = _State(config=config, defines=set(config.defines))
    stack = [source_path.resolve()] if source_path is not None else []
    return _Expander(state, source_path, stack).run(raw_text)


@dataclass
class _State:
    """Mutable symbol table shared by a file and its includes."""

    config: PreprocessConfig
    defines: set[str]


@dataclass
class _Frame:
    """Track one open conditional block."""

    parent_active: bool
    taken: bool
    active: bool


@dataclass
class _Expander:
    """Single-pass directive expander over one source text.

    Attributes:
        state: Configuration and the current symbol table.
        source_path: File being expanded, used to resolve relative includes.
        include_stack: Files currently being expanded, outermost first.
        frames: Open conditional blocks, innermost last.
    """

    state: _State
    source_path: Path | None
    include_stack: list[Path]
    frames: list[_Frame] = field(default_factory=list)

    @property
    def active(self) -> bool:
        """Return whether the current position is inside active code."""
        return all(frame.active for frame in self.frames)

    def run(self, text: str) -> str:
        """Expand directives in ``text`` and blank out excluded regions.

        String literals and ordinary comments are copied through untouched so
        that directive-like text inside them is never interpreted.

        Args:
            text: Raw source text.

        Returns:
            Expanded text with line structure preserved for excluded regions.
        """
        out: list[str] = []
        pos = 0
        length = len(text)
        while pos < length:
            char = text[pos]
            if char == "'":
                end = _string_end(text, pos)
            elif text.startswith("//", pos):
                newline = text.find("\n", pos)
                end = length if newline < 0 else newline
            elif char == "{" or text.startswith("(*", pos):
                closer = "}" if char == "{" else "*)"
                opener_length = 1 if char == "{" else 2
                close = text.find(closer, pos + opener_length)
                end = length if close < 0 else close + len(closer)
                if text.startswith("$", pos + opener_length) and close >= 0:
                    body = text[pos + opener_length + 1 : close]
                    out.append(self._directive(text[pos:end], body))
                    pos = end
                    continue
            else:
                special = _SPECIAL_START.search(text, pos + 1)
                end = length if special is None else special.start()
            chunk = text[pos:end]
            out.append(chunk if self.active else _newlines(chunk))
            pos = end
        if self.frames:
            logger.warning(
                f"Unterminated conditional block (path={self.source_path} depth={len(self.frames)})"
            )
        return "".join(out)

    def _directive(self, original: str, body: str) -> str:
        """Apply one ``{$...}`` directive and return its replacement text.

        Args:
            original: Directive text including its delimiters.
            body: Directive text after the ``$``.

        Returns:
            Replacement text: newlines for consumed directives, included text
            for includes, or the original directive when it is kept.
        """
        match = _DIRECTIVE_NAME.match(body)
        if match is None:
            return original if self.active else _newlines(original)
        name = match.group(1).upper()
        argument = match.group(2).strip()

        if name in _OPENING_CONDITIONALS:
            parent_active = self.active
            condition = parent_active and self._evaluate(name, argument)
            self.frames.append(_Frame(parent_active, condition, condition))
            return _newlines(original)
        if name == "ELSEIF":
            if self.frames:
                frame = self.frames[-1]
                condition = (
                    frame.parent_active and not frame.taken and self._evaluate("IF", argument)
                )
                frame.active = condition
                frame.taken = frame.taken or condition
            return _newlines(original)
        if name == "ELSE":
            if self.frames:
                frame = self.frames[-1]
                frame.active = frame.parent_active and not frame.taken
                frame.taken = True
            return _newlines(original)
        if name in _CLOSING_CONDITIONALS:
            if self.frames:
                self.frames.pop()
            else:
                logger.debug(f"Ignoring unmatched {name} (path={self.source_path})")
            return _newlines(original)
        if not self.active:
            return _newlines(original)
        if name == "DEFINE":
            self.state.defines.add(_symbol(argument))
            return _newlines(original)
        if name == "UNDEF":
            self.state.defines.discard(_symbol(argument))
            return _newlines(original)
        if name in ("I", "INCLUDE"):
            if name == "I" and argument[:1] in ("+", "-"):
                return original
            return self._include(argument) + _newlines(original)
        return original

    def _evaluate(self, name: str, argument: str) -> bool:
        """Evaluate the condition of an opening conditional directive."""
        if name == "IFDEF":
            return _symbol(argument) in self.state.defines
        if name == "IFNDEF":
            return _symbol(argument) not in self.state.defines
        if name == "IFOPT":
            return False
        try:
            return _ConditionEvaluator(argument, self.state.defines).evaluate()
        except ValueError:
            logger.debug(
                f"Treating unevaluable condition as false (path={self.source_path} condition={argument})"
            )
            return False

    def _include(self, argument: str) -> str:
        """Return the expanded include text, or an empty string when it is dropped."""
        file_name = argument.strip().strip("'\"").replace("\\", "/")
        resolved = self._resolve_include(file_name)
        if resolved is None:
            logger.warning(
                f"Dropping unresolved include (path={self.source_path} include={file_name})"
            )
            return ""
        if resolved in self.include_stack:
            logger.warning(
                f"Dropping circular include (path={self.source_path} include={resolved})"
            )
            return ""
        try:
            text = read_source(resolved)
        except PreprocessError:
            return ""
        logger.debug(f"Expanding include (path={self.source_path} include={resolved})")
        nested = _Expander(self.state, resolved, [*self.include_stack, resolved])
        return nested.run(text)

    def _resolve_include(self, file_name: str) -> Path | None:
        """Find an include beside the current file, then on the include path."""
        if not file_name:
            return None
        directories: list[Path] = []
        if self.source_path is not None:
            directories.append(self.source_path.parent)
        directories.extend(self.state.config.include_dirs)
        for directory in directories:
            candidate = directory / file_name
            if candidate.is_file():
                return candidate.resolve()
            folded = _case_insensitive_match(candidate)
            if folded is not None:
                return folded.resolve()
        return None


def _case_insensitive_match(candidate: Path) -> Path | None:
    """Return the directory entry matching ``candidate`` ignoring case."""
    parent = candidate.parent
    if not parent.is_dir():
        return None
    wanted = candidate.name.lower()
    for entry in sorted(parent.iterdir()):
        if entry.name.lower() == wanted and entry.is_file():
            return entry
    return None


def _string_end(text: str, pos: int) -> int:
    """Return the index after the string literal opened at ``pos``."""
    index = pos + 1
    while index < len(text):
        char = text[index]
        if char == "\n":
            return index
        if char == "'":
            return index + 1
        index += 1
    return index


def _newlines(text: str) -> str:
    """Return only the line breaks of ``text``."""
    return "\n" * text.count("\n")


def _symbol(argument: str) -> str:
    """Return the upper-cased symbol named by a directive argument."""
    parts = argument.split()
    return parts[0].upper() if parts else ""


class _ConditionEvaluator:
    """Evaluate ``{$IF}`` expressions built from Defined(), not, and, or."""

    def __init__(self, expression: str, defines: set[str]) -> None:
        self._tokens = [token.upper() for token in _CONDITION_TOKEN.findall(expression)]
        self._pos = 0
        self._defines = defines

    def evaluate(self) -> bool:
        """Evaluate the full expression.

        Returns:
            The truth value of the condition.

        Raises:
            ValueError: If the expression is empty or uses unsupported syntax.
        """
        if not self._tokens:
            raise ValueError("empty condition")
        result = self._or()
        if self._pos != len(self._tokens):
            raise ValueError("trailing tokens")
        return result

    def _peek(self) -> str:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else ""

    def _take(self, expected: str | None = None) -> str:
        token = self._peek()
        if not token or (expected is not None and token != expected):
            raise ValueError(f"expected {expected}")
        self._pos += 1
        return token

    def _or(self) -> bool:
        result = self._and()
        while self._peek() == "OR":
            self._take()
            right = self._and()
            result = result or right
        return result

    def _and(self) -> bool:
        result = self._not()
        while self._peek() == "AND":
            self._take()
            right = self._not()
            result = result and right
        return result

    def _not(self) -> bool:
        if self._peek() == "NOT":
            self._take()
            return not self._not()
        return self._primary()

    def _primary(self) -> bool:
        """Parse a parenthesized expression or a Defined() call."""
        token = self._take()
        if token == "(":
            result = self._or()
            self._take(")")
            return result
        if token == "DEFINED":
            self._take("(")
            symbol = self._take()
            self._take(")")
            return symbol in self._defines
        raise ValueError(f"unsupported token {token}")
