from __future__ import annotations

import shlex
import sys
from pathlib import Path

import pytest

from mender.tools.coverage import derive_test_path, is_coverage_improved, run_coverage
from mender.tools.files import is_within_root, read_text_or_empty, resolve_under_root, write_text
from mender.tools.runner import CommandResult


def _result(exit_code: int, stdout: str) -> CommandResult:
    return CommandResult(command="cov", cwd=Path("."), exit_code=exit_code, stdout=stdout, stderr="")


def test_improved_when_table_no_longer_lists_uncovered_lines() -> None:
    output = "All files | 100 | 100 | 100 | 100 |\n a.ts | 100 | 100 | 100 | 100 |"

    assert is_coverage_improved(_result(1, output), "10-12") is True


def test_not_improved_while_uncovered_lines_remain() -> None:
    output = "All files | 80 | 50 | 100 | 80 |\n a.ts | 80 | 50 | 100 | 80 | 10-12"

    assert is_coverage_improved(_result(1, output), "10-12") is False


def test_not_improved_without_coverage_table() -> None:
    assert is_coverage_improved(_result(1, "SyntaxError: unexpected token"), "10-12") is False


def test_clean_exit_counts_as_improved() -> None:
    assert is_coverage_improved(_result(0, ""), "10-12") is True


def test_coverage_py_total_row_is_recognised() -> None:
    output = "Name    Stmts   Miss  Cover\nsrc/a.py   4   0   100%\nTOTAL      4   0   100%"

    assert is_coverage_improved(_result(2, output), "7, 9-10") is True


@pytest.mark.parametrize(
    ("source", "expected"),
    [
        ("src/pkg/mod.py", "tests/pkg/test_mod.py"),
        ("pkg/mod.py", "tests/pkg/test_mod.py"),
        ("tests/test_mod.py", "tests/test_mod.py"),
        ("src/a/b.ts", "test/a/b.test.ts"),
        ("lib/widget.tsx", "lib/widget.test.tsx"),
        ("src/a.test.ts", "src/a.test.ts"),
    ],
)
def test_derive_test_path(source: str, expected: str) -> None:
    assert derive_test_path(source) == expected


def test_run_coverage_appends_test_path(tmp_path: Path) -> None:
    command = f"{shlex.quote(sys.executable)} -c \"import sys; print(sys.argv[1:])\""

    scoped = run_coverage(command, cwd=tmp_path, test_path="tests/test a.py")
    unscoped = run_coverage(command, cwd=tmp_path)

    assert "['tests/test a.py']" in scoped.stdout
    assert "[]" in unscoped.stdout


def test_resolve_under_root_keeps_rooted_and_absolute_paths(tmp_path: Path) -> None:
    root = tmp_path / "repo"

    assert resolve_under_root(root, "src/a.py") == root / "src" / "a.py"
    assert resolve_under_root(root, (root / "src" / "a.py").as_posix()) == root / "src" / "a.py"
    assert resolve_under_root(Path("repo"), "repo/src/a.py") == Path("repo/src/a.py")


def test_write_text_creates_parents_and_read_tolerates_missing(tmp_path: Path) -> None:
    target = tmp_path / "deep" / "nested" / "test_x.py"

    assert read_text_or_empty(target) == ""
    write_text(target, "content")
    assert read_text_or_empty(target) == "content"


@pytest.mark.parametrize("source", ["/abs/pkg/mod.py", "../pkg/mod.py", "src/../../mod.py"])
def test_derive_test_path_rejects_paths_outside_the_repository(source: str) -> None:
    with pytest.raises(ValueError):
        derive_test_path(source)


def test_is_within_root(tmp_path: Path) -> None:
    root = tmp_path / "repo"
    root.mkdir()

    assert is_within_root(root, "src/mod.py")
    assert is_within_root(root, root / "tests" / "test_mod.py")
    assert not is_within_root(root, "../other/mod.py")
    assert not is_within_root(root, tmp_path / "other" / "mod.py")
    assert not is_within_root(root, "/etc/passwd")
