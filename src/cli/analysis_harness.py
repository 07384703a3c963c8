# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Command line entry point for Delphi source metrics."""

import argparse
import json
import logging
import sys
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict
from pathlib import Path
from typing import Any, TextIO

from rich.console import Console
from rich.logging import RichHandler
from rich.style import Style
from rich.table import Table

from dsm.analyzer import AnalysisSummary, AnalyzerError
from dsm.analyzers import AnalysisAbortedError, DelphiAnalyzer
from dsm.coverage import CoverageRecord, CoverageReportError, CoverageReportParser, emit_coverage
from dsm.database import SQLitePersistence
from dsm.layout import ConfigurationError, FailurePolicy, ProjectLayout, discover_project
from dsm.measures import InMemoryMeasureSink, MeasureValue
from dsm.persistence import PersistenceError, PersistRunInput, PersistRunResult

logger = logging.getLogger(__name__)

SEVERITY_CHOICES = ("fatal", "skip")


def configure_logging(level: int = logging.INFO) -> None:
    """Configure application logging with Rich handler.

    Args:
        level: Logging severity threshold.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser instance.
    """
    parser = argparse.ArgumentParser(prog="dsm")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze_parser = subparsers.add_parser("analyze", help="Measure Delphi sources.")
    analyze_parser.add_argument("--path", required=True, help="Project base directory.")
    analyze_parser.add_argument("--name", help="Project name; defaults to the base directory name.")
    analyze_parser.add_argument(
        "--source-dir",
        action="append",
        default=[],
        help="Source directory relative to --path (repeatable; defaults to --path).",
    )
    analyze_parser.add_argument(
        "--test-dir", action="append", default=[], help="Test directory (repeatable)."
    )
    analyze_parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        help="Gitignore-style exclusion pattern relative to --path (repeatable).",
    )
    analyze_parser.add_argument(
        "--include-dir", action="append", default=[], help="Include search directory (repeatable)."
    )
    analyze_parser.add_argument(
        "--define", action="append", default=[], help="Active conditional symbol (repeatable)."
    )
    analyze_parser.add_argument("--coverage-report", help="XML coverage report to overlay.")
    analyze_parser.add_argument(
        "--format", choices=("table", "json"), default="table", help="Output format."
    )
    analyze_parser.add_argument(
        "--output",
        required=False,
        help="Optional output file path for raw JSON when --format json is used.",
    )
    analyze_parser.add_argument("--db", help="SQLite database file to persist the run into.")
    analyze_parser.add_argument(
        "--on-parse-failure",
        choices=SEVERITY_CHOICES,
        default="skip",
        help="Reaction to files that cannot be read or parsed.",
    )
    analyze_parser.add_argument(
        "--on-unresolved-directory",
        choices=SEVERITY_CHOICES,
        default="fatal",
        help="Reaction to files outside every tracked directory.",
    )
    analyze_parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    coverage_parser = subparsers.add_parser("coverage", help="Print a parsed coverage report.")
    coverage_parser.add_argument("--report", required=True, help="XML coverage report.")
    coverage_parser.add_argument(
        "--format", choices=("table", "json"), default="table", help="Output format."
    )
    coverage_parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser


def run(argv: list[str], stdout: TextIO, stderr: TextIO) -> int:
    """Run CLI command.

    Args:
        argv: CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit:
        logger.warning(f"Argument parsing failed (argv={argv})")
        return 2
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    if args.command == "analyze":
        return _run_analyze(args=args, stdout=stdout, stderr=stderr)
    if args.command == "coverage":
        return _run_coverage(args=args, stdout=stdout, stderr=stderr)

    logger.warning(f"Unsupported command (command={args.command})")
    stderr.write(f"Unsupported command: {args.command}\n")
    return 2


def _run_analyze(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    """Run analyze command.

    Args:
        args: Parsed CLI arguments.
        stdout: Standard output stream.
        stderr: Standard error stream.

    Returns:
        Exit code.
    """
    root_path = Path(args.path)
    if not root_path.is_dir():
        logger.warning(f"Path does not exist (path={root_path})")
        stderr.write(f"Path does not exist: {root_path}\n")
        return 2
    db_path = Path(args.db) if args.db else None
    if db_path is not None and not db_path.parent.exists():
        logger.warning(f"Database parent directory is missing (db_path={db_path})")
        stderr.write(f"Parent directory does not exist: {db_path.parent}\n")
        return 2
    report_path = Path(args.coverage_report) if args.coverage_report else None
    if report_path is not None and not report_path.is_file():
        logger.warning(f"Coverage report does not exist (path={report_path})")
        stderr.write(f"Coverage report does not exist: {report_path}\n")
        return 2

    layout = ProjectLayout(
        base_dir=root_path,
        source_dirs=tuple(Path(path) for path in args.source_dir),
        test_dirs=tuple(Path(path) for path in args.test_dir),
        exclude_patterns=tuple(args.exclude),
    )
    project = discover_project(
        layout,
        name=args.name,
        include_dirs=[_resolve_under(root_path, path) for path in args.include_dir],
        definitions=args.define,
    )
    policy = FailurePolicy(
        unresolved_directory=args.on_unresolved_directory,
        parse_failure=args.on_parse_failure,
    )
    sink = InMemoryMeasureSink()

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="coverage") as executor:
        coverage_future: Future[dict[str, CoverageRecord]] | None = None
        if report_path is not None:
            coverage_future = executor.submit(CoverageReportParser().parse, report_path)
        try:
            summary = DelphiAnalyzer(layout, policy=policy).analyze([project], sink)
        except (ConfigurationError, AnalysisAbortedError) as exc:
            logger.error(f"Analysis aborted (path={root_path} error={exc})")
            stderr.write(f"Analysis aborted: {exc}\n")
            return 1
        if coverage_future is not None:
            try:
                records = coverage_future.result()
            except CoverageReportError as exc:
                stderr.write(f"Invalid coverage report: {exc}\n")
                return 2
            matched = emit_coverage(records, summary.analyzed_files, sink)
            logger.info(f"Coverage overlay applied (records={len(records)} matched={len(matched)})")

    _write_errors(errors=list(summary.errors), stderr=stderr)
    run_result: PersistRunResult | None = None
    if db_path is not None:
        try:
            run_result = SQLitePersistence(db_path=db_path).persist_run(
                PersistRunInput(
                    root_path=str(root_path.resolve()),
                    project_names=(project.name,),
                    analyzer_error_count=len(summary.errors),
                    measures=sink.measures(),
                    violations=list(sink.violations),
                )
            )
        except PersistenceError as exc:
            stderr.write(f"Persistence failed: {exc}\n")
            return 2

    payload = _analysis_payload(sink=sink, summary=summary, run_result=run_result)
    if args.format == "json":
        if args.output:
            try:
                _write_json_file(payload=payload, output_path=Path(args.output))
            except OSError as exc:
                logger.warning(
                    f"Failed to write JSON output file (output_path={args.output} error={exc})"
                )
                stderr.write(f"Failed to write JSON output file: {args.output}\n")
                return 2
        else:
            _write_json(payload=payload, stdout=stdout)
    else:
        _write_measure_tables(sink=sink, stdout=stdout)
        if run_result is not None:
            stdout.write(_format_run_result(run_result) + "\n")
    return 0


def _run_coverage(args: argparse.Namespace, stdout: TextIO, stderr: TextIO) -> int:
    report_path = Path(args.report)
    if not report_path.is_file():
        logger.warning(f"Coverage report does not exist (path={report_path})")
        stderr.write(f"Coverage report does not exist: {report_path}\n")
        return 2
    try:
        records = CoverageReportParser().parse(report_path)
    except CoverageReportError as exc:
        stderr.write(f"Invalid coverage report: {exc}\n")
        return 2

    if args.format == "json":
        payload = {
            "coverage": [
                {
                    "file_key": record.file_key,
                    "coverage": record.coverage,
                    "line_hits_data": record.line_hits_data,
                }
                for record in sorted(records.values(), key=lambda item: item.file_key)
            ]
        }
        _write_json(payload=payload, stdout=stdout)
        return 0

    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    table = Table(show_header=True, expand=True)
    table.add_column("file_key", ratio=3, overflow="fold")
    table.add_column("coverage", ratio=1, justify="right")
    table.add_column("line_hits_data", ratio=4, overflow="fold")
    for key in sorted(records):
        record = records[key]
        table.add_row(record.file_key, f"{record.coverage:.2f}", record.line_hits_data)
    console.print(table)
    return 0


def _resolve_under(root_path: Path, value: str) -> Path:
    path = Path(value)
    return path if path.is_absolute() else root_path / path


def _format_value(value: MeasureValue) -> str:
    if isinstance(value, str):
        return value
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.2f}"


def _format_run_result(result: PersistRunResult) -> str:
    return (
        f"run_id={result.run_id} measure_count={result.measure_count} "
        f"violation_count={result.violation_count} "
        f"analyzer_error_count={result.analyzer_error_count} status={result.status}"
    )


def _analysis_payload(
    sink: InMemoryMeasureSink,
    summary: AnalysisSummary,
    run_result: PersistRunResult | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "measures": [asdict(measure) for measure in sink.measures()],
        "violations": [asdict(violation) for violation in sink.violations],
        "errors": [asdict(error) for error in summary.errors],
    }
    if run_result is not None:
        payload["run"] = asdict(run_result)
    return payload


def _write_errors(errors: list[AnalyzerError], stderr: TextIO) -> None:
    """Write analyzer errors to stderr.

    Args:
        errors: Recoverable analyzer errors.
        stderr: Standard error stream.
    """
    for error in errors:
        stderr.write(f"analyzer_error: {error}\n")


def _write_json(payload: dict[str, Any], stdout: TextIO) -> None:
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    console.print(
        json.dumps(payload, indent=2, sort_keys=True),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def _write_json_file(payload: dict[str, Any], output_path: Path) -> None:
    """Write raw JSON payload to an output file.

    Args:
        payload: JSON-serializable payload.
        output_path: Target file path.

    Raises:
        OSError: If directory creation or file writing fails.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")


def _write_measure_tables(sink: InMemoryMeasureSink, stdout: TextIO) -> None:
    """Write one metric/value table per resource.

    Args:
        sink: Sink holding the run's measures and violations.
        stdout: Standard output stream.
    """
    console = Console(file=stdout, force_terminal=False, color_system="truecolor")
    violations_by_resource: dict[str, int] = {}
    for violation in sink.violations:
        violations_by_resource[violation.resource_key] = (
            violations_by_resource.get(violation.resource_key, 0) + 1
        )
    for resource_key in sink.resource_keys():
        console.rule(resource_key, style=Style(color="cyan"), characters="-")
        table = Table(show_header=True, expand=True)
        table.add_column("metric", ratio=1, overflow="fold")
        table.add_column("value", ratio=3, justify="right", overflow="fold")
        for metric, value in sink.for_resource(resource_key).items():
            table.add_row(metric, _format_value(value))
        if resource_key in violations_by_resource:
            table.add_row("violations", str(violations_by_resource[resource_key]))
        console.print(table)


def main() -> None:
    """Run the CLI application and exit."""
    configure_logging()
    exit_code = run(sys.argv[1:], stdout=sys.stdout, stderr=sys.stderr)
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
