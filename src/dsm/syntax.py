# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Syntax tree types produced by the Delphi tree builder."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Literal

NodeKind = Literal[
    # goals and sections
    "unit",
    "program",
    "library",
    "package",
    "interface_section",
    "implementation_section",
    "initialization",
    "finalization",
    "main_block",
    "uses",
    "unit_ref",
    "exports",
    # declarations
    "type_section",
    "type_decl",
    "class_type",
    "forward_type",
    "other_type",
    "heritage",
    "type_ref",
    "visibility_section",
    "field",
    "property",
    "read_accessor",
    "write_accessor",
    "method_decl",
    "routine_decl",
    "routine",
    "routine_kind",
    "params",
    "param",
    "return_type",
    "directive",
    "var_section",
    "variable",
    "const_section",
    "constant",
    "label_section",
    "attribute",
    # statements
    "block",
    "compound",
    "if",
    "then",
    "else",
    "condition",
    "case",
    "selector",
    "case_branch",
    "case_labels",
    "case_else",
    "while",
    "repeat",
    "for",
    "for_in",
    "for_var",
    "with",
    "try",
    "except_block",
    "finally_block",
    "on_handler",
    "handler_else",
    "raise",
    "goto",
    "label_stmt",
    "asm_block",
    "assignment",
    "call_statement",
    "inline_var",
    # expressions
    "binary",
    "unary",
    "literal",
    "ident",
    "designator",
    "args",
    "index",
    "deref",
    "generic_args",
    "set",
    "range",
    "inherited",
    "anonymous_routine",
]

STATEMENT_KINDS: frozenset[str] = frozenset(
    {
        "if",
        "case",
        "while",
        "repeat",
        "for",
        "for_in",
        "with",
        "try",
        "raise",
        "goto",
        "asm_block",
        "assignment",
        "call_statement",
        "inline_var",
    }
)


@dataclass
class SyntaxNode:
    """Represent one concrete syntax tree node.

    Attributes:
        kind: Node category.
        line: Start line in the parsed text (1-based).
        column: Start column in the parsed text (1-based).
        text: Name, operator or literal carried by the node, if any.
        children: Ordered child nodes.
    """

    kind: NodeKind
    line: int
    column: int
    text: str = ""
    children: list["SyntaxNode"] = field(default_factory=list)

    def walk(self) -> Iterator["SyntaxNode"]:
        """Yield this node and all descendants in pre-order."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find_all(self, *kinds: NodeKind) -> Iterator["SyntaxNode"]:
        """Yield descendants (including self) of the requested kinds."""
        wanted = set(kinds)
        return (node for node in self.walk() if node.kind in wanted)

    def child(self, kind: NodeKind) -> "SyntaxNode | None":
        """Return the first direct child of ``kind`` or ``None``."""
        for node in self.children:
            if node.kind == kind:
                return node
        return None

    def children_of(self, *kinds: NodeKind) -> list["SyntaxNode"]:
        """Return direct children of the requested kinds."""
        wanted = set(kinds)
        return [node for node in self.children if node.kind in wanted]


@dataclass(frozen=True)
class Comment:
    """Represent one comment token kept beside the tree.

    Attributes:
        text: Exact comment text including delimiters.
        line: First line of the comment.
        end_line: Last line of the comment.
        column: Start column of the comment.
        is_directive: Whether the comment is a ``{$...}`` compiler directive.
    """

    text: str
    line: int
    end_line: int
    column: int
    is_directive: bool = False

    def content_lines(self) -> list[tuple[int, str]]:
        """Return ``(line, content)`` pairs with comment delimiters removed."""
        body = self.text
        if body.startswith("//"):
            body = body[2:]
        elif body.startswith("{"):
            body = body[1:-1]
        elif body.startswith("(*"):
            body = body[2:-2]
        return [
            (self.line + offset, part)
            for offset, part in enumerate(body.split("\n"))
        ]


@dataclass(frozen=True)
class SyntaxTree:
    """Represent a parsed source file.

    Attributes:
        file_path: Path the text was read from.
        root: Goal node (``unit``, ``program``, ``library`` or ``package``).
        comments: All comments in source order.
        code_lines: Lines holding at least one non-comment token.
        line_count: Number of lines in the parsed text.
    """

    file_path: str
    root: SyntaxNode
    comments: tuple[Comment, ...]
    code_lines: frozenset[int]
    line_count: int


@dataclass(frozen=True)
class ParseFailure:
    """Represent a file that could not be turned into a syntax tree."""

    file_path: str
    message: str
