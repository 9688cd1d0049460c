"""Prompt templates and helpers shared across mender phases."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the documented response schema. "
    "Do not include markdown fences, explanations, or trailing text. "
    "Use double-quoted keys and strings."
)

PHASE_INSTRUCTIONS: dict[str, str] = {
    "analyze_coverage": (
        "You are an expert at analyzing test coverage reports and identifying areas that need improvement. "
        "Parse the provided coverage report, find every file that does not meet the requested threshold "
        "in any category, and report its path, statement, branch, function and line coverage percentages "
        "and the uncovered line numbers exactly as printed in the report. Skip summary rows such as "
        "'All files' or 'TOTAL'."
    ),
    "find_related_files": (
        "You are a programming assistant. Given a file path and its content, list the files from the "
        "same repository that are needed to understand it: modules it imports, code under test, shared "
        "fixtures and helpers. Use repository-relative paths and order them from most to least relevant."
    ),
    "generate_tests": (
        "You are an expert test writer specializing in improving test coverage. Analyze the source file, "
        "the existing tests (if any) and the coverage information, then write a complete test file that "
        "exercises every exported function and class, edge cases, error scenarios and each branch, "
        "focusing on the uncovered lines. Use the test framework and import style already used in the "
        "repository. The returned code replaces the whole test file."
    ),
    "fix_test": (
        "You are a programming assistant. You receive a failing test file, related source files and the "
        "test runner error output. Fix the test file so that it passes against the current source code "
        "and return the complete corrected file content."
    ),
}


def render_system_prompt(phase: str) -> str:
    """Return the system prompt for ``phase`` followed by the JSON instruction."""
    instruction = PHASE_INSTRUCTIONS.get(phase, "")
    if not instruction:
        return JSON_RESPONSE_INSTRUCTION
    return f"{instruction}\n\n{JSON_RESPONSE_INSTRUCTION}"


def code_block(content: str, path: str | Path | None = None) -> str:
    """Wrap ``content`` in a fenced block tagged with the language guessed from ``path``."""
    language = _language_for(path)
    return f"```{language}\n{content}\n```"


def render_file_section(heading: str, path: str | Path, content: str) -> str:
    """Format a file as a markdown section with its path and fenced content."""
    return f"## {heading}\nFile Path: {Path(path).as_posix()}\n\n{code_block(content, path)}"


def render_related_files(files: Iterable[tuple[str, str]]) -> str:
    """Format related ``(path, content)`` pairs under a single heading."""
    sections = [f"### File: {path}\n\n{code_block(content, path)}" for path, content in files]
    if not sections:
        return "## Related Files\n(none found)"
    return "## Related Files\n" + "\n\n".join(sections)


_LANGUAGE_BY_SUFFIX = {
    ".py": "python",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".mts": "typescript",
    ".cts": "typescript",
    ".js": "javascript",
    ".jsx": "jsx",
    ".mjs": "javascript",
    ".cjs": "javascript",
}


def _language_for(path: str | Path | None) -> str:
    if path is None:
        return ""
    return _LANGUAGE_BY_SUFFIX.get(Path(path).suffix.lower(), "")


__all__ = [
    "JSON_RESPONSE_INSTRUCTION",
    "PHASE_INSTRUCTIONS",
    "code_block",
    "render_file_section",
    "render_related_files",
    "render_system_prompt",
]
