# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Line, comment and statement counts."""

from collections.abc import Sequence

from dsm.analyzer import SourceResource
from dsm.metrics.base import BaseCalculator, public_api_documentation
from dsm.model import ClassDecl, Function, Unit
from dsm.syntax import STATEMENT_KINDS, SyntaxTree


class SizeCalculator(BaseCalculator):
    """Count lines of code, comment lines and statements."""

    metrics = frozenset(
        {
            "lines",
            "ncloc",
            "comment_lines",
            "comment_blank_lines",
            "statements",
            "public_documented_api",
        }
    )
    emitted = ("lines", "ncloc", "comment_lines", "comment_blank_lines", "statements")

    def analyze(
        self,
        resource: SourceResource,
        tree: SyntaxTree,
        classes: Sequence[ClassDecl],
        functions: Sequence[Function],
        all_units: Sequence[Unit],
    ) -> None:
        """Count lines, comments, statements and documented public API.

        Directive comments are not comment lines. A comment line without any
        letter or digit counts as a blank comment line unless the same line also
        carries comment text.
        """
        comment_lines: set[int] = set()
        blank_lines: set[int] = set()
        for comment in tree.comments:
            if comment.is_directive:
                continue
            for line, content in comment.content_lines():
                if any(char.isalnum() for char in content):
                    comment_lines.add(line)
                else:
                    blank_lines.add(line)

        statements = sum(1 for _ in tree.root.find_all(*STATEMENT_KINDS))
        documented = sum(1 for flag in public_api_documentation(classes, functions) if flag)
        self._values = {
            "lines": float(tree.line_count),
            "ncloc": float(len(tree.code_lines)),
            "comment_lines": float(len(comment_lines)),
            "comment_blank_lines": float(len(blank_lines - comment_lines)),
            "statements": float(statements),
            "public_documented_api": float(documented),
        }
