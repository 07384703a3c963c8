# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Unused routine and unused unit detection."""

import logging
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass

from dsm.analyzer import SourceResource
from dsm.measures import MeasureSink, Violation
from dsm.metrics.base import BaseCalculator
from dsm.model import ClassDecl, Function, Unit
from dsm.syntax import SyntaxTree

logger = logging.getLogger(__name__)

UNUSED_FUNCTION_RULE = "UnusedFunctionRule"
UNUSED_UNIT_RULE = "UnusedUnitRule"

_ENTRY_POINT_KINDS: frozenset[str] = frozenset({"constructor", "destructor", "operator"})
_ENTRY_POINT_DIRECTIVES: frozenset[str] = frozenset(
    {"virtual", "dynamic", "override", "abstract", "message"}
)


@dataclass(frozen=True)
class _UsageIndex:
    """Cross-unit usage facts for one set of modeled units.

    Attributes:
        reference_counts: Occurrences of each lower-cased name across routine bodies.
        unit_references: Names referenced outside routine bodies.
        exported: Lower-cased names listed in ``exports`` clauses.
        interface_methods: Lower-cased method names declared by interfaces.
        used_units: ``"<file key>\\0<unit name>"`` pairs from ``uses`` clauses.
    """

    reference_counts: Counter[str]
    unit_references: frozenset[str]
    exported: frozenset[str]
    interface_methods: frozenset[str]
    used_units: frozenset[str]


def _build_index(all_units: Sequence[Unit]) -> _UsageIndex:
    """Collect usage facts from every unit."""
    counts: Counter[str] = Counter()
    unit_references: set[str] = set()
    exported: set[str] = set()
    interface_methods: set[str] = set()
    used_units: set[str] = set()
    for unit in all_units:
        for function in unit.all_functions():
            counts.update(function.references)
        unit_references.update(unit.references)
        exported.update(name.rpartition(".")[2].lower() for name in unit.exports)
        for interface in unit.interfaces:
            interface_methods.update(method.name.lower() for method in interface.methods)
        used_units.update(f"{unit.key}\0{name.lower()}" for name in unit.uses)
    return _UsageIndex(
        reference_counts=counts,
        unit_references=frozenset(unit_references),
        exported=frozenset(exported),
        interface_methods=frozenset(interface_methods),
        used_units=frozenset(used_units),
    )


class DeadCodeCalculator(BaseCalculator):
    """Flag routines without call sites and units nobody uses."""

    metrics = frozenset({"unused_functions", "unused_units"})
    emitted = ("unused_functions", "unused_units")

    def __init__(self) -> None:
        super().__init__()
        self._violations: list[Violation] = []
        self._indexed_units: Sequence[Unit] | None = None
        self._index: _UsageIndex | None = None

    def applies_to(self, resource: SourceResource) -> bool:
        """Skip test resources, whose routines are entry points for a runner."""
        return not resource.is_test

    def analyze(
        self,
        resource: SourceResource,
        tree: SyntaxTree,
        classes: Sequence[ClassDecl],
        functions: Sequence[Function],
        all_units: Sequence[Unit],
    ) -> None:
        """Flag unreferenced routines and the unit itself when nobody uses it.

        A routine counts as used when any routine other than itself references
        its name, or when the name appears outside routine bodies. Entry points
        are never flagged.

        Args:
            resource: File being measured.
            tree: Syntax tree of the file.
            classes: Classes declared in the file.
            functions: Free routines and methods of the file.
            all_units: Every unit modeled for the project.
        """
        index = self._usage_index(all_units)
        unit = next((candidate for candidate in all_units if candidate.key == resource.key), None)
        self._violations = []

        unused = [
            function
            for function in functions
            if not self._is_entry_point(function, unit, index) and not self._is_used(function, index)
        ]
        for function in unused:
            self._violations.append(
                Violation(
                    resource_key=resource.key,
                    rule_key=UNUSED_FUNCTION_RULE,
                    line=function.line,
                    message=f"Routine '{function.qualified_name}' is never used.",
                )
            )

        unused_unit = unit is not None and self._is_unused_unit(unit, all_units, index)
        if unused_unit and unit is not None:
            self._violations.append(
                Violation(
                    resource_key=resource.key,
                    rule_key=UNUSED_UNIT_RULE,
                    line=1,
                    message=f"Unit '{unit.name}' is not used by any other unit.",
                )
            )
        self._values = {
            "unused_functions": float(len(unused)),
            "unused_units": 1.0 if unused_unit else 0.0,
        }
        logger.debug(
            f"Dead code computed (file_key={resource.key} unused_functions={len(unused)} "
            f"unused_unit={unused_unit})"
        )

    def emit(self, resource: SourceResource, sink: MeasureSink) -> None:
        """Save the counts and one violation per finding."""
        super().emit(resource, sink)
        for violation in self._violations:
            sink.save_violation(violation)

    @property
    def violations(self) -> list[Violation]:
        """Return the violations found by the last ``analyze`` call."""
        return list(self._violations)

    def _usage_index(self, all_units: Sequence[Unit]) -> _UsageIndex:
        """Return the usage index, rebuilding it when ``all_units`` changes."""
        if self._index is None or self._indexed_units is not all_units:
            self._index = _build_index(all_units)
            self._indexed_units = all_units
        return self._index

    def _is_entry_point(self, function: Function, unit: Unit | None, index: _UsageIndex) -> bool:
        """Return whether a routine is reachable without an explicit call.

        Entry points are routines of test units, constructors, destructors and
        operators, routines marked ``virtual``, ``dynamic``, ``override``,
        ``abstract`` or ``message``, published methods, methods named by an
        interface, and exported routines.
        """
        if unit is not None and unit.is_test:
            return True
        if function.kind in _ENTRY_POINT_KINDS:
            return True
        if function.directives & _ENTRY_POINT_DIRECTIVES:
            return True
        name = function.name.lower()
        if function.is_method:
            if function.visibility == "published":
                return True
            if name in index.interface_methods:
                return True
        return name in index.exported

    def _is_used(self, function: Function, index: _UsageIndex) -> bool:
        """Return whether a name is referenced outside its own body."""
        name = function.name.lower()
        count = index.reference_counts[name]
        if name in function.references:
            count -= 1
        return count > 0 or name in index.unit_references

    def _is_unused_unit(
        self, unit: Unit, all_units: Sequence[Unit], index: _UsageIndex
    ) -> bool:
        """Return whether no other unit lists this unit in its ``uses`` clause."""
        if unit.kind != "unit":
            return False
        name = unit.name.lower()
        return not any(
            f"{other.key}\0{name}" in index.used_units
            for other in all_units
            if other.key != unit.key
        )
