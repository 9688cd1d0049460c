"""Coverage command helpers and post-fix classification."""

from __future__ import annotations

import shlex
from pathlib import Path, PurePosixPath
from typing import Mapping

from .runner import CommandResult, run_command

# Header rows printed by Istanbul-based reporters (Jest/Vitest) and coverage.py.
COVERAGE_TABLE_MARKERS: tuple[str, ...] = ("All files", "TOTAL")

_JS_SUFFIXES = frozenset({".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".mts", ".cts"})


def run_coverage(
    command: str,
    *,
    cwd: Path | str,
    test_path: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run the coverage command, optionally scoped to a single test file.

    The result is returned whatever the exit status; coverage tools commonly
    exit non-zero when a threshold is not met while still printing the report.
    """

    invocation = command if not test_path else f"{command} {shlex.quote(test_path)}"
    return run_command(invocation, cwd=cwd, env=env, timeout=timeout)


def is_coverage_improved(result: CommandResult, uncovered_lines: str) -> bool:
    """Classify a verification run for a low-coverage file.

    A clean exit counts as improved. Otherwise the run counts as improved
    when it printed a coverage table that no longer mentions the lines that
    were uncovered before the fix.
    """

    if result.ok:
        return True
    output = result.output
    if not any(marker in output for marker in COVERAGE_TABLE_MARKERS):
        return False
    return uncovered_lines not in output


def derive_test_path(source_path: str) -> str:
    """Return the conventional test file location for ``source_path``.

    ``src/pkg/mod.py`` maps to ``tests/pkg/test_mod.py``; ``src/a/b.ts`` maps
    to ``test/a/b.test.ts``. Files already named as tests map to themselves.
    ``source_path`` must be relative to the repository root.
    """

    path = PurePosixPath(source_path.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts:
        raise ValueError(f"Expected a repository-relative source path, got {source_path!r}")
    suffix = path.suffix
    parts = list(path.parent.parts)

    if suffix == ".py":
        if path.name.startswith("test_") or path.stem.endswith("_test"):
            return path.as_posix()
        if "src" in parts:
            parts[parts.index("src")] = "tests"
        else:
            parts.insert(0, "tests")
        return PurePosixPath(*parts, f"test_{path.name}").as_posix()

    if suffix in _JS_SUFFIXES:
        if path.stem.endswith((".test", ".spec")):
            return path.as_posix()
        if "src" in parts:
            parts[parts.index("src")] = "test"
        return PurePosixPath(*parts, f"{path.stem}.test{suffix}").as_posix()

    return PurePosixPath(*parts, f"test_{path.name}").as_posix()


__all__ = [
    "COVERAGE_TABLE_MARKERS",
    "derive_test_path",
    "is_coverage_improved",
    "run_coverage",
]
