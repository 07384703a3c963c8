# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Project layout: resource keys, directory attribution and file discovery."""

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

import pathspec

from dsm.preprocessor import PreprocessConfig

logger = logging.getLogger(__name__)

SOURCE_SUFFIXES: frozenset[str] = frozenset({".pas", ".dpr", ".dpk"})
ROOT_DIRECTORY_KEY = "."

FailureSeverity = Literal["fatal", "skip"]


class ConfigurationError(RuntimeError):
    """Represent a fatal project configuration problem."""


@dataclass(frozen=True)
class FailurePolicy:
    """Define how the orchestrator reacts to per-file problems.

    Attributes:
        unresolved_directory: Severity when a file's directory is not tracked.
        parse_failure: Severity when a file cannot be read or parsed.
    """

    unresolved_directory: FailureSeverity = "fatal"
    parse_failure: FailureSeverity = "skip"


@dataclass(frozen=True)
class DelphiProject:
    """Represent one project analyzed in a single cache pass.

    Attributes:
        name: Display name.
        source_files: Source files in analysis order.
        include_dirs: Include search path.
        definitions: Active conditional symbols.
    """

    name: str
    source_files: tuple[Path, ...]
    include_dirs: tuple[Path, ...] = ()
    definitions: frozenset[str] = frozenset()

    def preprocess_config(self) -> PreprocessConfig:
        """Return the preprocessing configuration for this project."""
        return PreprocessConfig.for_project(self.include_dirs, self.definitions)


@dataclass(frozen=True)
class ProjectLayout:
    """Classify files into source, test and excluded resources.

    Attributes:
        base_dir: Directory resource keys are relative to.
        source_dirs: Tracked source directories; defaults to ``base_dir``.
        test_dirs: Tracked test directories.
        exclude_patterns: Gitignore-style patterns relative to ``base_dir``.
    """

    base_dir: Path
    source_dirs: tuple[Path, ...] = ()
    test_dirs: tuple[Path, ...] = ()
    exclude_patterns: tuple[str, ...] = ()
    _spec: pathspec.GitIgnoreSpec = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        base_dir = Path(self.base_dir).resolve()
        object.__setattr__(self, "base_dir", base_dir)
        source_dirs = tuple(self._absolute(path) for path in self.source_dirs) or (base_dir,)
        object.__setattr__(self, "source_dirs", source_dirs)
        object.__setattr__(self, "test_dirs", tuple(self._absolute(path) for path in self.test_dirs))
        object.__setattr__(
            self, "_spec", pathspec.GitIgnoreSpec.from_lines(list(self.exclude_patterns))
        )

    def _absolute(self, path: Path) -> Path:
        path = Path(path)
        if not path.is_absolute():
            path = Path(self.base_dir) / path
        return path.resolve()

    def _relative(self, path: Path) -> str:
        absolute = self._absolute(path)
        try:
            return absolute.relative_to(self.base_dir).as_posix()
        except ValueError:
            return absolute.as_posix()

    def resource_key(self, path: Path) -> str:
        """Return the base-relative POSIX key of a file."""
        return self._relative(path)

    def directory_key(self, path: Path) -> str | None:
        """Return the key of the tracked directory a file belongs to.

        Args:
            path: Source file path.

        Returns:
            The base-relative key of the file's parent directory, ``"."`` for
            the base directory itself, or ``None`` when the file is not under a
            tracked source or test directory.
        """
        absolute = self._absolute(path)
        if not any(absolute.is_relative_to(root) for root in (*self.source_dirs, *self.test_dirs)):
            return None
        key = self._relative(absolute.parent)
        return key or ROOT_DIRECTORY_KEY

    def is_excluded(self, path: Path) -> bool:
        """Return whether a path matches an exclusion pattern."""
        relative = self._relative(path).replace(os.sep, "/").strip("/")
        if not relative:
            return False
        return self._spec.match_file(relative)

    def is_test(self, path: Path) -> bool:
        absolute = self._absolute(path)
        return any(absolute.is_relative_to(root) for root in self.test_dirs)


def discover_project(
    layout: ProjectLayout,
    name: str | None = None,
    include_dirs: Iterable[Path] = (),
    definitions: Iterable[str] = (),
) -> DelphiProject:
    """Collect Delphi source files beneath the layout's tracked directories.

    Args:
        layout: Layout naming source and test directories and exclusions.
        name: Project name; defaults to the base directory name.
        include_dirs: Include search path for the project.
        definitions: Active conditional symbols for the project.

    Returns:
        A project listing non-excluded source files in sorted order.
    """
    files: dict[Path, None] = {}
    for root in (*layout.source_dirs, *layout.test_dirs):
        if not root.is_dir():
            logger.warning(f"Skipping missing source directory (path={root})")
            continue
        for path in sorted(root.rglob("*")):
            if path.suffix.lower() not in SOURCE_SUFFIXES or not path.is_file():
                continue
            if layout.is_excluded(path):
                logger.debug(f"Skipping excluded file (path={path})")
                continue
            files.setdefault(path.resolve(), None)
    project = DelphiProject(
        name=name or layout.base_dir.name,
        source_files=tuple(files),
        include_dirs=tuple(Path(path) for path in include_dirs),
        definitions=frozenset(definitions),
    )
    logger.info(f"Project discovered (name={project.name} files={len(project.source_files)})")
    return project
