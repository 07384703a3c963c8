# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""Analyzer package for Delphi source metrics."""

from dsm.analyzers.delphi import AnalysisAbortedError, DelphiAnalyzer

__all__ = ["AnalysisAbortedError", "DelphiAnalyzer"]
