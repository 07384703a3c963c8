# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""LCOM4 cohesion metric."""

import logging
from collections.abc import Sequence

from dsm.analyzer import SourceResource
from dsm.metrics.base import BaseCalculator
from dsm.model import ClassDecl, Function, Unit
from dsm.syntax import SyntaxTree

logger = logging.getLogger(__name__)


def lcom4(class_decl: ClassDecl) -> int:
    """Return the number of connected components of the method/field graph.

    Nodes are implemented methods and the fields they reference. A method is
    linked to every field it references and to every own method it calls.
    References to a property resolve to its read and write accessors.

    Args:
        class_decl: Class to measure.

    Returns:
        LCOM4 value; ``1`` when the graph has no nodes.
    """
    methods = [method for method in class_decl.methods if method.has_body]
    if not methods:
        return 1
    field_names = {field.name.lower() for field in class_decl.fields}
    method_names = {method.name.lower() for method in methods}
    property_targets: dict[str, set[str]] = {}
    for prop in class_decl.properties:
        targets = {
            accessor.rpartition(".")[2].lower()
            for accessor in (prop.read_accessor, prop.write_accessor)
            if accessor
        }
        property_targets.setdefault(prop.name.lower(), set()).update(targets)

    adjacency: dict[str, set[str]] = {f"m:{name}": set() for name in method_names}
    for method in methods:
        node = f"m:{method.name.lower()}"
        for reference in _resolve(method, property_targets):
            if reference in field_names:
                other = f"f:{reference}"
            elif reference in method_names and reference != method.name.lower():
                other = f"m:{reference}"
            else:
                continue
            adjacency[node].add(other)
            adjacency.setdefault(other, set()).add(node)

    visited: set[str] = set()
    components = 0
    for start in adjacency:
        if start in visited:
            continue
        components += 1
        stack = [start]
        visited.add(start)
        while stack:
            current = stack.pop()
            for neighbor in adjacency[current]:
                if neighbor not in visited:
                    visited.add(neighbor)
                    stack.append(neighbor)
    return components


def _resolve(method: Function, property_targets: dict[str, set[str]]) -> set[str]:
    """Return the method's references with property names expanded to accessors."""
    resolved = set(method.references)
    for reference in method.references:
        resolved.update(property_targets.get(reference, ()))
    return resolved


class CohesionCalculator(BaseCalculator):
    """Report the worst LCOM4 value among a file's classes."""

    metrics = frozenset({"lcom4"})
    emitted = ("lcom4",)

    def analyze(
        self,
        resource: SourceResource,
        tree: SyntaxTree,
        classes: Sequence[ClassDecl],
        functions: Sequence[Function],
        all_units: Sequence[Unit],
    ) -> None:
        """Record the highest LCOM4 among the file's classes, if it has any."""
        self._values = {}
        if not classes:
            return
        values = [lcom4(class_decl) for class_decl in classes]
        self._values["lcom4"] = float(max(values))
        logger.debug(f"LCOM4 computed (file_key={resource.key} classes={len(values)})")
