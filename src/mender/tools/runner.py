"""Shell command execution and failing-test extraction."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CommandResult:
    """Structured summary of a shell command invocation."""

    command: str
    cwd: Path
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Return stdout followed by stderr."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


@dataclass(slots=True, frozen=True)
class FailingTestRef:
    """Test file reported as failing by the test runner."""

    test_file_path: str


def _merge_env(extra: Mapping[str, str] | None) -> Dict[str, str]:
    """Merge provided environment overrides with the current process state."""
    env: Dict[str, str] = os.environ.copy()
    if extra:
        env.update({str(key): str(value) for key, value in extra.items()})
    return env


def run_command(
    command: str,
    *,
    cwd: Path | str,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run ``command`` through the shell in ``cwd`` and capture its output.

    A non-zero exit status is returned as data. Failures to start the shell at
    all (for example a missing working directory) propagate.
    """

    workdir = Path(cwd).resolve()
    LOGGER.debug("Running %r in %s", command, workdir)
    try:
        process = subprocess.run(  # noqa: S602 - command string comes from user configuration
            command,
            shell=True,
            cwd=workdir,
            env=_merge_env(env),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as error:
        stdout = _decode(error.stdout)
        stderr = _decode(error.stderr)
        message = f"Command timed out after {timeout} second(s)."
        return CommandResult(
            command=command,
            cwd=workdir,
            exit_code=124,
            stdout=stdout,
            stderr=f"{stderr}\n{message}" if stderr else message,
        )

    LOGGER.debug("Command %r exited with %d", command, process.returncode)
    return CommandResult(
        command=command,
        cwd=workdir,
        exit_code=process.returncode,
        stdout=process.stdout or "",
        stderr=process.stderr or "",
    )


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_JS_FAIL_RE = re.compile(
    r"^\s*FAIL\s+(?P<path>\S+\.(?:test|spec)\.(?:[cm]?js|jsx|ts|tsx|mts|cts))(?:\s|$)",
    re.MULTILINE,
)
_PY_FAIL_RE = re.compile(r"^(?:FAILED|ERROR)\s+(?P<path>[^\s:]+\.py)(?:::|\s|$)", re.MULTILINE)

_FAILURE_BANNERS = (
    re.compile(r"⎯+\s*Failed Tests"),
    re.compile(r"^=+\s*(?:FAILURES|ERRORS)\s*=+\s*$", re.MULTILINE),
    re.compile(r"^\s*●\s", re.MULTILINE),
)


def strip_ansi(text: str) -> str:
    """Remove terminal colour escapes from runner output."""
    return _ANSI_RE.sub("", text)


def parse_failing_tests(output: str) -> list[FailingTestRef]:
    """Extract unique failing test files from Jest/Vitest or pytest output.

    Order follows first appearance in ``output``.
    """

    text = strip_ansi(output)
    matches: list[tuple[int, str]] = []
    for pattern in (_JS_FAIL_RE, _PY_FAIL_RE):
        for match in pattern.finditer(text):
            matches.append((match.start(), match.group("path")))

    seen: set[str] = set()
    refs: list[FailingTestRef] = []
    for _, path in sorted(matches):
        cleaned = path.strip()
        while cleaned.startswith("./"):
            cleaned = cleaned[2:]
        if cleaned in seen:
            continue
        seen.add(cleaned)
        refs.append(FailingTestRef(test_file_path=cleaned))
    return refs


def extract_failure_report(output: str) -> str:
    """Return the diagnostic part of a failing test run.

    Falls back to the full output when no known failure banner is present.
    """

    text = strip_ansi(output)
    positions: list[int] = []
    for pattern in _FAILURE_BANNERS:
        match = pattern.search(text)
        if match:
            positions.append(match.start())
    if not positions:
        return text.strip()
    return text[min(positions) :].strip()


__all__ = [
    "CommandResult",
    "FailingTestRef",
    "extract_failure_report",
    "parse_failing_tests",
    "run_command",
    "strip_ansi",
]
