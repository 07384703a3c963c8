# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Cyclomatic complexity, API surface and inheritance-shape metrics."""

import logging
from collections.abc import Iterable, Sequence

from dsm.analyzer import SourceResource
from dsm.metrics.base import BaseCalculator, public_api_documentation
from dsm.model import ClassDecl, Function, Unit
from dsm.syntax import SyntaxNode, SyntaxTree

logger = logging.getLogger(__name__)

_LOOP_KINDS: frozenset[str] = frozenset({"while", "repeat", "for", "for_in"})
_LOGICAL_OPERATORS: frozenset[str] = frozenset({"and", "or"})


def function_complexity(function: Function) -> int:
    """Return ``1 +`` the decision points found in the function body.

    Decision points are ``if`` statements, ``case`` branches, loops and each
    ``and``/``or`` operator inside an ``if``, ``while`` or ``until`` condition.
    """
    return 1 + sum(_decision_points(statement) for statement in function.statements)


def _decision_points(statement: SyntaxNode) -> int:
    """Count the decision points inside one statement subtree."""
    count = 0
    for node in statement.walk():
        if node.kind == "if" or node.kind in _LOOP_KINDS or node.kind == "case_branch":
            count += 1
        elif node.kind == "condition":
            count += sum(
                1
                for inner in node.walk()
                if inner.kind == "binary" and inner.text in _LOGICAL_OPERATORS
            )
    return count


def class_complexity(class_decl: ClassDecl) -> int:
    """Return the summed complexity of the class's implemented methods."""
    return sum(function_complexity(method) for method in class_decl.methods if method.has_body)


def inheritance_depth(class_decl: ClassDecl, classes_by_name: dict[str, ClassDecl]) -> int:
    """Return the number of declared parent links above ``class_decl``.

    Each declared parent is one level; the chain continues through parents
    that are themselves analyzed classes.
    """
    depth = 0
    seen = {class_decl.name.lower()}
    current: ClassDecl | None = class_decl
    while current is not None and current.parents:
        depth += 1
        parent_name = current.parents[0].lower()
        if parent_name in seen:
            logger.debug(f"Inheritance cycle detected (class={class_decl.name})")
            break
        seen.add(parent_name)
        current = classes_by_name.get(parent_name)
    return depth


def _index_classes(all_units: Iterable[Unit]) -> dict[str, ClassDecl]:
    """Index analyzed classes by lower-cased name; the first declaration wins."""
    index: dict[str, ClassDecl] = {}
    for unit in all_units:
        for class_decl in unit.classes:
            index.setdefault(class_decl.name.lower(), class_decl)
    return index


class ComplexityCalculator(BaseCalculator):
    """Compute complexity, API and class-shape metrics for one file."""

    metrics = frozenset(
        {
            "complexity",
            "functions",
            "function_complexity",
            "classes",
            "class_complexity",
            "accessors",
            "public_api",
            "rfc",
            "dit",
            "noc",
        }
    )
    emitted = (
        "complexity",
        "function_complexity",
        "class_complexity",
        "functions",
        "classes",
        "rfc",
        "dit",
        "noc",
        "accessors",
        "public_api",
    )

    def analyze(
        self,
        resource: SourceResource,
        tree: SyntaxTree,
        classes: Sequence[ClassDecl],
        functions: Sequence[Function],
        all_units: Sequence[Unit],
    ) -> None:
        """Compute the file's complexity, API surface and inheritance metrics.

        Args:
            resource: File being measured.
            tree: Syntax tree of the file.
            classes: Classes declared in the file.
            functions: Free routines and methods of the file.
            all_units: Every unit modeled for the project, used to resolve
                parents, children and callable routine names.
        """
        implemented = [function for function in functions if function.has_body]
        complexity = sum(function_complexity(function) for function in implemented)
        per_class = [class_complexity(class_decl) for class_decl in classes]

        classes_by_name = _index_classes(all_units)
        routine_names = {
            function.name.lower() for unit in all_units for function in unit.all_functions()
        }
        all_classes = list(classes_by_name.values())

        self._values = {
            "complexity": float(complexity),
            "functions": float(len(implemented)),
            "function_complexity": complexity / len(implemented) if implemented else 0.0,
            "classes": float(len(classes)),
            "class_complexity": sum(per_class) / len(per_class) if per_class else 0.0,
            "accessors": float(sum(self._accessor_count(class_decl) for class_decl in classes)),
            "public_api": float(len(public_api_documentation(classes, functions))),
            "rfc": float(
                sum(self._response_for_class(class_decl, routine_names) for class_decl in classes)
            ),
            "dit": float(
                max(
                    (inheritance_depth(class_decl, classes_by_name) for class_decl in classes),
                    default=0,
                )
            ),
            "noc": float(
                sum(self._children_count(class_decl, all_classes) for class_decl in classes)
            ),
        }
        logger.debug(
            f"Complexity computed (file_key={resource.key} complexity={complexity} "
            f"functions={len(implemented)})"
        )

    def _accessor_count(self, class_decl: ClassDecl) -> int:
        """Count methods used as property read or write accessors."""
        accessor_names = class_decl.accessor_names()
        return sum(1 for method in class_decl.methods if method.name.lower() in accessor_names)

    def _response_for_class(self, class_decl: ClassDecl, routine_names: set[str]) -> int:
        """Return own methods plus distinct external routines they call."""
        own = {method.name.lower() for method in class_decl.methods}
        called: set[str] = set()
        for method in class_decl.methods:
            called.update(method.references & routine_names)
        return len(class_decl.methods) + len(called - own)

    def _children_count(self, class_decl: ClassDecl, all_classes: list[ClassDecl]) -> int:
        """Count analyzed classes whose first parent is ``class_decl``."""
        name = class_decl.name.lower()
        return sum(
            1
            for candidate in all_classes
            if candidate.parents and candidate.parents[0].lower() == name
        )
