# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Persistence contracts."""

import logging

from dataclasses import dataclass
from typing import Literal, Protocol

from dsm.measures import Measure, Violation

logger = logging.getLogger(__name__)

RunStatus = Literal["completed", "completed_with_errors", "failed"]


class PersistenceError(RuntimeError):
    """Represent a fatal persistence operation failure."""


@dataclass(frozen=True)
class PersistRunInput:
    """Describe all values needed to persist one analysis run.

    Attributes:
        root_path: Base directory analyzed in this run.
        project_names: Names of the analyzed projects, in order.
        analyzer_error_count: Number of recoverable analyzer errors.
        measures: Measures saved during the run.
        violations: Violations reported during the run.
    """

    root_path: str
    project_names: tuple[str, ...]
    analyzer_error_count: int
    measures: list[Measure]
    violations: list[Violation]


@dataclass(frozen=True)
class PersistRunResult:
    """Represent the persisted run summary."""

    run_id: int
    measure_count: int
    violation_count: int
    analyzer_error_count: int
    status: RunStatus


class Persistence(Protocol):
    """Define the contract for persisting one run snapshot."""

    def persist_run(self, payload: PersistRunInput) -> PersistRunResult:
        """Persist one complete run snapshot."""
