"""Shared phase enumerations."""

from __future__ import annotations

from enum import Enum


class PhaseName(str, Enum):
    """Enumeration of the model-backed phases."""

    ANALYZE_COVERAGE = "analyze_coverage"
    FIND_RELATED_FILES = "find_related_files"
    GENERATE_TESTS = "generate_tests"
    FIX_TEST = "fix_test"


__all__ = ["PhaseName"]
