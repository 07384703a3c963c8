# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Measure and violation records and the sinks that collect them."""

import logging
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

MeasureValue = float | str


class DuplicateMeasureError(RuntimeError):
    """Represent a second write to an already saved measure key."""


@dataclass(frozen=True)
class Measure:
    """Represent one saved measure.

    Attributes:
        resource_key: File or directory key the value belongs to.
        metric: Metric name.
        value: Numeric value, or text for serialized data measures.
    """

    resource_key: str
    metric: str
    value: MeasureValue


@dataclass(frozen=True)
class Violation:
    """Represent one rule finding reported against a resource."""

    resource_key: str
    rule_key: str
    line: int
    message: str


class MeasureSink(Protocol):
    """Receive measures and violations produced by an analysis run."""

    def save_measure(self, resource_key: str, metric: str, value: MeasureValue) -> None:
        """Store one measure value."""

    def save_violation(self, violation: Violation) -> None:
        """Store one violation."""

    def has_resource(self, resource_key: str) -> bool:
        """Return whether any measure was saved for ``resource_key``."""


class InMemoryMeasureSink:
    """Collect measures in memory with write-once semantics per key."""

    def __init__(self) -> None:
        self._measures: dict[tuple[str, str], Measure] = {}
        self._resources: set[str] = set()
        self.violations: list[Violation] = []

    def save_measure(self, resource_key: str, metric: str, value: MeasureValue) -> None:
        """Store one measure value.

        Raises:
            DuplicateMeasureError: If the key was already written in this run.
        """
        key = (resource_key, metric)
        if key in self._measures:
            raise DuplicateMeasureError(
                f"Measure already saved (resource_key={resource_key} metric={metric})"
            )
        self._measures[key] = Measure(resource_key=resource_key, metric=metric, value=value)
        self._resources.add(resource_key)

    def save_violation(self, violation: Violation) -> None:
        self.violations.append(violation)

    def has_resource(self, resource_key: str) -> bool:
        return resource_key in self._resources

    def get(self, resource_key: str, metric: str) -> MeasureValue | None:
        """Return the saved value for a key or ``None``."""
        measure = self._measures.get((resource_key, metric))
        return measure.value if measure is not None else None

    def measures(self) -> list[Measure]:
        """Return measures in save order."""
        return list(self._measures.values())

    def for_resource(self, resource_key: str) -> dict[str, MeasureValue]:
        """Return metric name to value for one resource."""
        return {
            measure.metric: measure.value
            for measure in self._measures.values()
            if measure.resource_key == resource_key
        }

    def resource_keys(self) -> list[str]:
        """Return resource keys in first-save order."""
        seen: dict[str, None] = {}
        for measure in self._measures.values():
            seen.setdefault(measure.resource_key, None)
        return list(seen)
