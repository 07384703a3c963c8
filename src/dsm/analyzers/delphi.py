# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Delphi project analysis orchestrator."""

import logging
from collections.abc import Sequence

from dsm.analyzer import AnalysisSummary, AnalyzerError, SourceResource
from dsm.cache import AnalysisCache, CacheEntry
from dsm.layout import ConfigurationError, DelphiProject, FailurePolicy, ProjectLayout
from dsm.measures import MeasureSink
from dsm.metrics import MetricCalculator, default_calculators
from dsm.model import Unit
from dsm.model_builder import ModelBuilder
from dsm.parser import SyntaxTreeBuilder
from dsm.preprocessor import PreprocessConfig, PreprocessError, preprocess, read_source
from dsm.syntax import ParseFailure, SyntaxTree

logger = logging.getLogger(__name__)


class AnalysisAbortedError(RuntimeError):
    """Represent a per-file failure escalated to fatal by the failure policy."""


class DelphiAnalyzer:
    """Run the preprocessing, parsing, modeling and metric pipeline."""

    def __init__(
        self,
        layout: ProjectLayout,
        calculators: Sequence[MetricCalculator] | None = None,
        policy: FailurePolicy | None = None,
        parser: SyntaxTreeBuilder | None = None,
        model_builder: ModelBuilder | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            layout: Resource classification for analyzed files.
            calculators: Metric calculators run for every file, in order.
            policy: Severity of unresolved directories and parse failures.
            parser: Syntax tree builder.
            model_builder: Semantic model builder used by per-project caches.
        """
        self._layout = layout
        self._calculators = list(calculators) if calculators is not None else default_calculators()
        self._policy = policy or FailurePolicy()
        self._parser = parser or SyntaxTreeBuilder()
        self._model_builder = model_builder or ModelBuilder()

    def analyze(self, projects: Sequence[DelphiProject], sink: MeasureSink) -> AnalysisSummary:
        """Analyze projects in order and save their measures.

        Args:
            projects: Projects to analyze; each gets a fresh analysis cache.
            sink: Destination for measures and violations.

        Returns:
            Run summary with analyzed files and recoverable errors.

        Raises:
            ConfigurationError: If a file's directory is not tracked and the
                policy makes that fatal.
            AnalysisAbortedError: If a file fails to parse and the policy makes
                that fatal.
        """
        errors: list[AnalyzerError] = []
        analyzed: list[str] = []
        skipped: list[str] = []
        measured: set[str] = set()
        directory_files: dict[str, set[str]] = {}

        for project in projects:
            cache = AnalysisCache(self._model_builder)
            cache.reset()
            config = project.preprocess_config()
            logger.info(
                f"Analyzing project (name={project.name} files={len(project.source_files)})"
            )
            resources: list[SourceResource] = []
            for path in project.source_files:
                if self._layout.is_excluded(path):
                    logger.debug(f"Skipping excluded file (path={path})")
                    continue
                key = self._layout.resource_key(path)
                directory_key = self._layout.directory_key(path)
                if directory_key is None:
                    message = f"Source directory is not tracked (file_path={key})"
                    if self._policy.unresolved_directory == "fatal":
                        logger.error(message)
                        raise ConfigurationError(message)
                    logger.warning(message)
                    errors.append(AnalyzerError(file_path=key, message=message))
                    continue
                directory_files.setdefault(directory_key, set()).add(key)
                resource = SourceResource(
                    key=key,
                    path=path,
                    directory_key=directory_key,
                    is_test=self._layout.is_test(path),
                )
                tree = self._build_tree(resource, config, errors)
                if tree is None:
                    continue
                cache.get_or_build(key, tree, is_test=resource.is_test)
                resources.append(resource)

            units = cache.units()
            for resource in resources:
                if resource.key in measured:
                    logger.debug(f"Skipping already measured file (file_path={resource.key})")
                    skipped.append(resource.key)
                    continue
                entry = cache.get(resource.key)
                if entry is None:
                    continue
                self._measure(resource, entry, units, sink)
                measured.add(resource.key)
                analyzed.append(resource.key)
            cache.reset()

        for directory_key, keys in sorted(directory_files.items()):
            sink.save_measure(directory_key, "directories", 1.0)
            sink.save_measure(directory_key, "files", float(len(keys)))

        logger.info(
            f"Analysis finished (files={len(analyzed)} errors={len(errors)} "
            f"directories={len(directory_files)})"
        )
        return AnalysisSummary(
            analyzed_files=tuple(analyzed),
            errors=tuple(errors),
            directory_files=tuple((key, len(keys)) for key, keys in sorted(directory_files.items())),
            skipped_files=tuple(skipped),
        )

    def _build_tree(
        self, resource: SourceResource, config: PreprocessConfig, errors: list[AnalyzerError]
    ) -> SyntaxTree | None:
        """Read, preprocess and parse one file.

        Returns:
            The syntax tree, or ``None`` when the file was skipped.

        Raises:
            AnalysisAbortedError: If the file fails under a fatal parse policy.
        """
        try:
            raw_text = read_source(resource.path)
        except PreprocessError as exc:
            return self._fail(resource, str(exc), errors)
        text = preprocess(raw_text, config, source_path=resource.path)
        result = self._parser.parse(text, resource.key)
        if isinstance(result, ParseFailure):
            return self._fail(resource, result.message, errors)
        return result

    def _fail(self, resource: SourceResource, message: str, errors: list[AnalyzerError]) -> None:
        """Record a skipped file, or abort when the parse policy is fatal."""
        if self._policy.parse_failure == "fatal":
            logger.error(f"Aborting on file failure (file_path={resource.key} error={message})")
            raise AnalysisAbortedError(f"{resource.key}: {message}")
        logger.warning(
            f"Skipping file due to parse/read failure (file_path={resource.key} error={message})"
        )
        errors.append(AnalyzerError(file_path=resource.key, message=message))
        return None

    def _measure(
        self, resource: SourceResource, entry: CacheEntry, units: list[Unit], sink: MeasureSink
    ) -> None:
        """Run every applicable calculator on one file and emit its measures.

        ``public_undocumented_api`` is derived from the size and complexity
        calculators' values after both have run.
        """
        public_api: float | None = None
        documented_api: float | None = None
        for calculator in self._calculators:
            if not calculator.applies_to(resource):
                continue
            calculator.analyze(resource, entry.tree, entry.classes, entry.functions, units)
            calculator.emit(resource, sink)
            if "public_api" in calculator.metrics:
                public_api = calculator.value_of("public_api")
            if "public_documented_api" in calculator.metrics:
                documented_api = calculator.value_of("public_documented_api")
        if public_api is not None and documented_api is not None:
            sink.save_measure(
                resource.key, "public_undocumented_api", max(0.0, public_api - documented_api)
            )
