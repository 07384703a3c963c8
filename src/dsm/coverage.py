# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Coverage report parsing and coverage measure emission."""

import logging
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path, PurePosixPath

from dsm.measures import MeasureSink

logger = logging.getLogger(__name__)

_FILE_TAGS: frozenset[str] = frozenset({"file", "srcfile"})


class CoverageReportError(RuntimeError):
    """Represent an unreadable or malformed coverage report."""


@dataclass(frozen=True)
class CoverageRecord:
    """Represent line-hit data reported for one file.

    Attributes:
        file_key: Normalized file path as written in the report.
        line_hits: Line number to hit count for every instrumented line.
    """

    file_key: str
    line_hits: dict[int, int] = field(default_factory=dict)

    @property
    def instrumented_lines(self) -> int:
        return len(self.line_hits)

    @property
    def covered_lines(self) -> int:
        return sum(1 for hits in self.line_hits.values() if hits > 0)

    @property
    def coverage(self) -> float:
        """Return the covered percentage rounded half-up to two decimals."""
        if not self.line_hits:
            return 0.0
        ratio = Decimal(self.covered_lines) * 100 / Decimal(self.instrumented_lines)
        return float(ratio.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

    @property
    def line_hits_data(self) -> str:
        """Return ``line=hits`` pairs joined by ``;`` in ascending line order."""
        return ";".join(f"{line}={hits}" for line, hits in sorted(self.line_hits.items()))


class CoverageReportParser:
    """Parse XML coverage reports into per-file records."""

    def parse(self, report_path: Path) -> dict[str, CoverageRecord]:
        """Parse a coverage report.

        Args:
            report_path: XML report produced by the coverage tool.

        Returns:
            Records keyed by normalized report file path.

        Raises:
            CoverageReportError: If the report cannot be read or is not XML.
        """
        try:
            root = ET.parse(report_path).getroot()
        except (OSError, ET.ParseError) as exc:
            logger.warning(f"Unable to parse coverage report (path={report_path} error={exc})")
            raise CoverageReportError(f"Unable to parse coverage report {report_path}: {exc}") from exc

        line_hits: dict[str, dict[int, int]] = {}
        for element in root.iter():
            if element.tag not in _FILE_TAGS:
                continue
            name = element.get("name") or element.get("path")
            if not name:
                logger.debug(f"Skipping coverage entry without a file name (tag={element.tag})")
                continue
            hits = line_hits.setdefault(normalize_report_path(name), {})
            for line in element.iter("line"):
                parsed = _parse_line(line)
                if parsed is None:
                    continue
                number, count = parsed
                hits[number] = max(count, hits.get(number, 0))

        records = {key: CoverageRecord(file_key=key, line_hits=hits) for key, hits in line_hits.items()}
        logger.info(f"Coverage report parsed (path={report_path} files={len(records)})")
        return records


def _parse_line(element: ET.Element) -> tuple[int, int] | None:
    number = element.get("number") or element.get("nr")
    hits = element.get("hits", "0")
    try:
        return int(number or ""), int(hits)
    except ValueError:
        logger.warning(f"Skipping malformed coverage line (number={number} hits={hits})")
        return None


def normalize_report_path(name: str) -> str:
    """Return a POSIX-style path without leading ``./``."""
    normalized = name.strip().replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized


def emit_coverage(
    records: dict[str, CoverageRecord], resource_keys: Iterable[str], sink: MeasureSink
) -> list[str]:
    """Save coverage measures for records that match tracked resources.

    A record matches a resource whose key equals the record key, otherwise the
    single resource whose file name equals the record's file name ignoring
    case. Records without a match are logged and dropped.

    Args:
        records: Parsed coverage records.
        resource_keys: Keys of source files tracked in this run.
        sink: Destination for ``coverage`` and ``coverage_line_hits_data``.

    Returns:
        Resource keys that received coverage measures.
    """
    keys = list(resource_keys)
    exact = set(keys)
    by_name: dict[str, list[str]] = {}
    for key in keys:
        by_name.setdefault(PurePosixPath(key).name.lower(), []).append(key)

    emitted: list[str] = []
    for record in records.values():
        if record.file_key in exact:
            key = record.file_key
        else:
            candidates = by_name.get(PurePosixPath(record.file_key).name.lower(), [])
            if len(candidates) != 1:
                logger.info(
                    f"Coverage entry not matched to a source file (file_key={record.file_key} "
                    f"candidates={len(candidates)})"
                )
                continue
            key = candidates[0]
        if key in emitted:
            logger.warning(f"Ignoring repeated coverage entry (resource_key={key})")
            continue
        sink.save_measure(key, "coverage", record.coverage)
        sink.save_measure(key, "coverage_line_hits_data", record.line_hits_data)
        emitted.append(key)
    return emitted
