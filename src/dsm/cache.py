# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Per-project cache of semantic models."""

import logging
from dataclasses import dataclass

from dsm.model import ClassDecl, Function, Unit
from dsm.model_builder import ModelBuilder
from dsm.syntax import SyntaxTree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """Represent the cached analysis artifacts of one file.

    Attributes:
        unit: Semantic unit model.
        tree: Syntax tree the unit was built from.
        classes: Classes declared in the unit.
        functions: Free routines and methods of the unit.
    """

    unit: Unit
    tree: SyntaxTree
    classes: tuple[ClassDecl, ...]
    functions: tuple[Function, ...]


class AnalysisCache:
    """Map file keys to semantic models for one project pass."""

    def __init__(self, builder: ModelBuilder | None = None) -> None:
        self._builder = builder or ModelBuilder()
        self._entries: dict[str, CacheEntry] = {}

    def get_or_build(self, file_key: str, tree: SyntaxTree, is_test: bool = False) -> CacheEntry:
        """Return the entry for ``file_key``, building it on first request.

        Args:
            file_key: Resource key of the file.
            tree: Syntax tree used when the entry is absent.
            is_test: Whether the file belongs to a test directory.

        Returns:
            The cached entry for the key.
        """
        entry = self._entries.get(file_key)
        if entry is not None:
            logger.debug(f"Cache hit (file_key={file_key})")
            return entry
        unit = self._builder.build(tree, file_key, is_test=is_test)
        entry = CacheEntry(
            unit=unit,
            tree=tree,
            classes=unit.classes,
            functions=tuple(unit.all_functions()),
        )
        self._entries[file_key] = entry
        return entry

    def get(self, file_key: str) -> CacheEntry | None:
        """Return the cached entry for ``file_key`` without building one."""
        return self._entries.get(file_key)

    def units(self) -> list[Unit]:
        """Return every cached unit in insertion order."""
        return [entry.unit for entry in self._entries.values()]

    def reset(self) -> None:
        """Evict every entry."""
        if self._entries:
            logger.debug(f"Resetting analysis cache (entries={len(self._entries)})")
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, file_key: object) -> bool:
        return file_key in self._entries
