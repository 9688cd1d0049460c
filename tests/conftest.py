from __future__ import annotations

import json
import shlex
import sys
import textwrap
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from mender.config import MenderConfig  # noqa: E402
from mender.models.llm_client import LLMClient  # noqa: E402

Reply = Union[str, Dict[str, Any], Callable[[Dict[str, Any]], str]]


class ScriptedClient(LLMClient):
    """Deterministic client replaying canned replies per phase."""

    def __init__(self, replies: Dict[str, List[Reply]] | None = None, *, default: Dict[str, Reply] | None = None) -> None:
        super().__init__("scripted", max_attempts=1, retry_delay=0)
        self._replies = {phase: list(items) for phase, items in (replies or {}).items()}
        self._default = dict(default or {})
        self._lock = threading.Lock()
        self.calls: list[dict[str, Any]] = []

    def calls_for(self, phase: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["metadata"].get("phase") == phase]

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        metadata = payload.get("metadata") or {}
        phase = metadata.get("phase", "unknown")
        with self._lock:
            self.calls.append(payload)
            queue = self._replies.get(phase)
            if queue:
                reply = queue.pop(0)
            elif phase in self._default:
                reply = self._default[phase]
            else:
                raise AssertionError(f"No scripted reply for phase {phase!r}")
        if callable(reply):
            return reply(payload)
        if isinstance(reply, str):
            return reply
        return json.dumps(reply)


def prompt_text(payload: Dict[str, Any]) -> str:
    """Concatenate every text fragment of a request payload."""
    fragments: list[str] = []
    for message in payload.get("input", []):
        for item in message.get("content", []):
            fragments.append(item.get("text", ""))
    return "\n".join(fragments)


CHECK_SCRIPT = textwrap.dedent(
    """
    import pathlib
    import sys

    root = pathlib.Path.cwd()
    targets = sys.argv[1:] or sorted(
        path.relative_to(root).as_posix() for path in (root / "tests").glob("test_*.py")
    )
    failed = False
    for target in targets:
        text = (root / target).read_text(encoding="utf-8")
        if "BROKEN" in text:
            print(f"FAILED {target}::test_case - AssertionError: still broken")
            failed = True
        else:
            print(f"PASSED {target}")
    sys.exit(1 if failed else 0)
    """
).lstrip()

COVERAGE_SCRIPT = textwrap.dedent(
    """
    import pathlib
    import sys

    root = pathlib.Path.cwd()
    covered = False
    if len(sys.argv) > 1:
        target = root / sys.argv[1]
        covered = target.exists() and "COVERS" in target.read_text(encoding="utf-8")
    print("Name          Stmts   Miss  Cover   Missing")
    if covered:
        print("src/calc.py      10      0   100%")
    else:
        print("src/calc.py      10      3    70%   10-12")
    print("TOTAL            10      3    70%")
    # Coverage tools exit non-zero when a fail-under threshold is not met.
    sys.exit(2)
    """
).lstrip()


@dataclass(slots=True)
class TargetRepo:
    """Synthetic repository driven by small Python scripts instead of real runners."""

    root: Path
    test_command: str
    coverage_command: str
    logs_root: Path = field(init=False)

    def __post_init__(self) -> None:
        self.logs_root = self.root / ".mender" / "logs"

    def write(self, relative: str, content: str) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        return path

    def read(self, relative: str) -> str:
        return (self.root / relative).read_text(encoding="utf-8")

    def config(self, **overrides: Any) -> MenderConfig:
        values: dict[str, Any] = {
            "target_root": self.root,
            "test_command": self.test_command,
            "coverage_command": self.coverage_command,
            "logs_root": self.logs_root,
            "max_workers": 4,
        }
        values.update(overrides)
        return MenderConfig(**values)


@pytest.fixture()
def target_repo(tmp_path: Path) -> TargetRepo:
    """Create a repository with a scripted test runner and coverage reporter."""

    root = tmp_path / "target"
    root.mkdir()
    (root / "run_checks.py").write_text(CHECK_SCRIPT, encoding="utf-8")
    (root / "coverage_report.py").write_text(COVERAGE_SCRIPT, encoding="utf-8")
    (root / "src").mkdir()
    (root / "src" / "calc.py").write_text(
        "def add(left, right):\n    return left + right\n",
        encoding="utf-8",
    )
    (root / "tests").mkdir()
    python = shlex.quote(sys.executable)
    return TargetRepo(
        root=root.resolve(),
        test_command=f"{python} run_checks.py",
        coverage_command=f"{python} coverage_report.py",
    )


@pytest.fixture()
def scripted_client() -> Callable[..., ScriptedClient]:
    """Return the ``ScriptedClient`` factory."""
    return ScriptedClient


@pytest.fixture()
def payload_text() -> Callable[[Dict[str, Any]], str]:
    return prompt_text
