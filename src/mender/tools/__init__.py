"""Tool integrations for running commands and touching the target workspace."""

from .coverage import derive_test_path, is_coverage_improved, run_coverage
from .files import read_text, read_text_or_empty, resolve_under_root, write_text
from .runner import CommandResult, FailingTestRef, extract_failure_report, parse_failing_tests, run_command

__all__ = [
    "CommandResult",
    "FailingTestRef",
    "derive_test_path",
    "extract_failure_report",
    "is_coverage_improved",
    "parse_failing_tests",
    "read_text",
    "read_text_or_empty",
    "resolve_under_root",
    "run_command",
    "run_coverage",
    "write_text",
]
