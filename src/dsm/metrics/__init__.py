# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Metric calculators."""

from dsm.metrics.base import BaseCalculator, MetricCalculator
from dsm.metrics.cohesion import CohesionCalculator
from dsm.metrics.complexity import ComplexityCalculator
from dsm.metrics.dead_code import DeadCodeCalculator
from dsm.metrics.size import SizeCalculator


def default_calculators() -> list[MetricCalculator]:
    """Return the statically known calculator list in evaluation order."""
    return [
        SizeCalculator(),
        ComplexityCalculator(),
        CohesionCalculator(),
        DeadCodeCalculator(),
    ]


__all__ = [
    "BaseCalculator",
    "CohesionCalculator",
    "ComplexityCalculator",
    "DeadCodeCalculator",
    "MetricCalculator",
    "SizeCalculator",
    "default_calculators",
]
