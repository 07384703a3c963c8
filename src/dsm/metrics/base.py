# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Metric calculator contract and shared helpers."""

import logging
from collections.abc import Sequence
from typing import Protocol

from dsm.analyzer import SourceResource
from dsm.measures import MeasureSink
from dsm.model import PUBLIC_VISIBILITIES, ClassDecl, Function, Unit
from dsm.syntax import SyntaxTree

logger = logging.getLogger(__name__)


class MetricCalculator(Protocol):
    """Uniform contract implemented by every metric calculator.

    ``analyze`` replaces the calculator's state with values for one resource;
    ``emit`` writes those values to a sink.
    """

    metrics: frozenset[str]

    def applies_to(self, resource: SourceResource) -> bool:
        """Return whether the calculator measures ``resource``."""

    def analyze(
        self,
        resource: SourceResource,
        tree: SyntaxTree,
        classes: Sequence[ClassDecl],
        functions: Sequence[Function],
        all_units: Sequence[Unit],
    ) -> None:
        """Compute values for one resource."""

    def value_of(self, metric: str) -> float:
        """Return the last computed value of ``metric``."""

    def emit(self, resource: SourceResource, sink: MeasureSink) -> None:
        """Save the computed values for ``resource``."""


class BaseCalculator:
    """Hold computed values and emit the reportable subset."""

    metrics: frozenset[str] = frozenset()
    emitted: tuple[str, ...] = ()

    def __init__(self) -> None:
        self._values: dict[str, float] = {}

    def applies_to(self, resource: SourceResource) -> bool:
        """Measure every resource unless a subclass narrows it."""
        return True

    def value_of(self, metric: str) -> float:
        """Return the last computed value of ``metric``.

        Raises:
            KeyError: If the calculator does not know ``metric``.
        """
        if metric not in self.metrics:
            raise KeyError(f"{type(self).__name__} does not compute {metric!r}")
        return self._values.get(metric, 0.0)

    def emit(self, resource: SourceResource, sink: MeasureSink) -> None:
        """Save the emitted metrics computed by the last ``analyze`` call."""
        for metric in self.emitted:
            if metric in self._values:
                sink.save_measure(resource.key, metric, self._values[metric])


def public_api_documentation(
    classes: Sequence[ClassDecl], functions: Sequence[Function]
) -> list[bool]:
    """Return the documentation flag of every public API element.

    Public API elements are public classes, their public and published methods
    and properties, and free routines declared in the interface section.
    """
    flags: list[bool] = []
    for class_decl in classes:
        if class_decl.visibility != "public":
            continue
        flags.append(class_decl.documented)
        flags.extend(
            method.documented
            for method in class_decl.methods
            if method.visibility in PUBLIC_VISIBILITIES
        )
        flags.extend(
            prop.documented
            for prop in class_decl.properties
            if prop.visibility in PUBLIC_VISIBILITIES
        )
    flags.extend(
        function.documented
        for function in functions
        if not function.is_method and function.visibility == "public"
    )
    return flags
