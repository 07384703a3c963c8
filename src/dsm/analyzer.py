# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Analyzer interfaces and DTOs for Delphi source measurement."""

from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from dsm.layout import DelphiProject
    from dsm.measures import MeasureSink


@dataclass(frozen=True)
class SourceResource:
    """Represent one source file tracked by the quality host.

    Attributes:
        key: Resource key (base-relative POSIX path).
        path: Absolute file path.
        directory_key: Key of the directory the file is attributed to.
        is_test: Whether the file lives in a test directory.
    """

    key: str
    path: Path
    directory_key: str
    is_test: bool = False


@dataclass(frozen=True)
class AnalyzerError:
    """Represent an analyzer error for one file."""

    file_path: str
    message: str


@dataclass(frozen=True)
class AnalysisSummary:
    """Summarize one analysis run.

    Attributes:
        analyzed_files: Keys of files whose measures were emitted.
        errors: Recoverable per-file errors.
        directory_files: Directory key to attributed file count.
        skipped_files: Keys of files already measured earlier in the run.
    """

    analyzed_files: tuple[str, ...]
    errors: tuple[AnalyzerError, ...]
    directory_files: tuple[tuple[str, int], ...]
    skipped_files: tuple[str, ...] = ()


class Analyzer(Protocol):
    """Source analyzer contract."""

    def analyze(
        self, projects: Sequence["DelphiProject"], sink: "MeasureSink"
    ) -> AnalysisSummary:
        """Analyze projects and write their measures to ``sink``."""
