"""Test-fix and coverage-fix pipelines.

Both pipelines follow the same shape: run a command over the target
repository, derive a list of independent work items from its output, then fan
out one bounded fix-and-verify loop per item. Expected failures (a test that
stays red, a model reply that fails validation for one file) are recorded on
the item result; anything else propagates and aborts the run.
"""

from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import MenderConfig
from .fanout import fan_out
from .models.llm_client import LLMClient, LLMClientError
from .phases.analyze_coverage import CoverageFinding, analyze_coverage
from .phases.fix_test import FixTestRequest, fix_test
from .phases.generate_tests import GenerateTestsRequest, generate_tests
from .phases.related_files import find_related_files
from .retry import FixAttempt, RetryController, RetryState, Verification
from .tools.coverage import derive_test_path, is_coverage_improved, run_coverage
from .tools.files import (
    is_within_root,
    read_text,
    read_text_or_empty,
    resolve_under_root,
    write_text,
)
from .tools.runner import FailingTestRef, extract_failure_report, parse_failing_tests, run_command

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ItemResult:
    """Terminal outcome for one failing test file or low-coverage file."""

    file_path: str
    test_file_path: str
    success: bool
    attempts: int = 0
    state: RetryState = RetryState.PENDING
    error: Optional[str] = None


@dataclass(slots=True, frozen=True)
class PipelineResult:
    """Aggregate outcome of a pipeline run, items in submission order."""

    summary: str
    items: tuple[ItemResult, ...] = ()

    @property
    def success_count(self) -> int:
        return sum(1 for item in self.items if item.success)


def _item_from_attempt(
    file_path: str,
    test_file_path: str,
    attempt: Optional[FixAttempt],
    *,
    error: Optional[str] = None,
) -> ItemResult:
    if attempt is None:
        return ItemResult(
            file_path=file_path,
            test_file_path=test_file_path,
            success=False,
            state=RetryState.ABORTED,
            error=error,
        )
    return ItemResult(
        file_path=file_path,
        test_file_path=test_file_path,
        success=attempt.succeeded,
        attempts=attempt.attempt_count,
        state=attempt.state,
        error=error,
    )


class _Pipeline:
    def __init__(self, *, client: LLMClient, config: MenderConfig) -> None:
        self._client = client
        self._config = config

    @property
    def root(self) -> Path:
        return self._config.target_root

    def _relative(self, value: str) -> str:
        """Return ``value`` relative to the target root when it lies inside it."""
        resolved = resolve_under_root(self.root, value).resolve()
        try:
            return resolved.relative_to(self.root.resolve()).as_posix()
        except ValueError:
            return Path(value).as_posix()


class FixTestsPipeline(_Pipeline):
    """Detect failing test files and repair them one loop per file."""

    def run(self) -> PipelineResult:
        config = self._config
        LOGGER.info("Running %r in %s", config.test_command, self.root)
        initial = run_command(config.test_command, cwd=self.root, timeout=config.command_timeout)
        if initial.ok:
            LOGGER.info("Test command passed; nothing to fix.")
            return PipelineResult(summary="No failing tests found")

        refs = parse_failing_tests(initial.output)
        if not refs:
            LOGGER.warning("Test command exited with %d but no failing test files were found", initial.exit_code)
            return PipelineResult(summary="Test command failed but no failing test files were detected")

        LOGGER.info("Identified %d failing test file(s): %s", len(refs), ", ".join(r.test_file_path for r in refs))
        results = fan_out(
            refs,
            self.process,
            key=lambda ref: resolve_under_root(self.root, ref.test_file_path).resolve(),
            max_workers=config.max_workers,
        )
        fixed = sum(1 for item in results if item.success)
        return PipelineResult(
            summary=f"Fixed {fixed} out of {len(refs)} failing test files",
            items=tuple(results),
        )

    def process(self, ref: FailingTestRef) -> ItemResult:
        """Run the fix-and-verify loop for a single failing test file."""
        config = self._config
        relative = self._relative(ref.test_file_path)
        if not is_within_root(self.root, ref.test_file_path):
            LOGGER.warning("Skipping %s: outside of %s", ref.test_file_path, self.root)
            error = f"Test file is outside the target root: {ref.test_file_path}"
            return _item_from_attempt(relative, relative, None, error=error)
        test_path = resolve_under_root(self.root, relative)
        LOGGER.info("Processing test: %s", relative)

        try:
            content = read_text(test_path)
        except FileNotFoundError:
            LOGGER.warning("Failing test file %s does not exist", test_path)
            return _item_from_attempt(relative, relative, None, error=f"Test file not found: {test_path}")

        def verify() -> Verification:
            command = f"{config.test_command} {shlex.quote(relative)}"
            result = run_command(command, cwd=self.root, timeout=config.command_timeout)
            return Verification(success=result.ok, output=result.output)

        controller: Optional[RetryController] = None
        try:
            related = find_related_files(
                relative,
                content,
                root=self.root,
                client=self._client,
                purpose="fix this failing test file",
                logs_root=config.logs_root,
            )

            def fix(previous: Verification) -> None:
                request = FixTestRequest(
                    test_path=relative,
                    test_content=read_text(test_path),
                    error_text=extract_failure_report(previous.output),
                    related_files=related,
                )
                write_text(test_path, fix_test(request, client=self._client, logs_root=config.logs_root))

            controller = RetryController(relative, verify=verify, fix=fix, cap=config.test_max_attempts)
            attempt = controller.run()
        except LLMClientError as error:
            LOGGER.error("Giving up on %s: %s", relative, error)
            return _item_from_attempt(
                relative,
                relative,
                controller.attempt if controller else None,
                error=str(error),
            )

        return _item_from_attempt(relative, relative, attempt)


class FixCoveragePipeline(_Pipeline):
    """Detect low-coverage files and generate tests for each of them."""

    def run(self) -> PipelineResult:
        config = self._config
        LOGGER.info("Running %r in %s", config.coverage_command, self.root)
        report = run_coverage(config.coverage_command, cwd=self.root, timeout=config.command_timeout)

        findings = analyze_coverage(
            report.output,
            config.coverage_threshold,
            client=self._client,
            logs_root=config.logs_root,
        )
        if not findings:
            return PipelineResult(summary="All files meet the coverage threshold")

        LOGGER.info("Fixing coverage for %d file(s)", len(findings))
        results = fan_out(findings, self.process, key=self._target_key, max_workers=config.max_workers)
        improved = sum(1 for item in results if item.success)
        return PipelineResult(
            summary=f"Improved coverage for {improved} out of {len(findings)} files",
            items=tuple(results),
        )

    def test_path_for(self, finding: CoverageFinding) -> str:
        return derive_test_path(self._relative(finding.file_path))

    def _target_key(self, finding: CoverageFinding) -> Path:
        if not is_within_root(self.root, finding.file_path):
            return resolve_under_root(self.root, finding.file_path).resolve()
        return resolve_under_root(self.root, self.test_path_for(finding)).resolve()

    def process(self, finding: CoverageFinding) -> ItemResult:
        """Generate and verify tests for a single low-coverage file."""
        config = self._config
        if not is_within_root(self.root, finding.file_path):
            LOGGER.warning("Skipping %s: outside of %s", finding.file_path, self.root)
            error = f"Source file is outside the target root: {finding.file_path}"
            return _item_from_attempt(finding.file_path, "", None, error=error)

        source_relative = self._relative(finding.file_path)
        test_relative = self.test_path_for(finding)
        source_path = resolve_under_root(self.root, source_relative)
        test_path = resolve_under_root(self.root, test_relative)
        LOGGER.info(
            "Improving coverage for file: %s, uncovered lines: %s", source_relative, finding.uncovered_lines
        )

        try:
            source_content = read_text(source_path)
        except FileNotFoundError:
            LOGGER.warning("Source file %s does not exist", source_path)
            error = f"Source file not found: {source_path}"
            return _item_from_attempt(source_relative, test_relative, None, error=error)
        if not test_path.exists():
            LOGGER.info("Test file %s does not exist yet. Will create a new one.", test_path)

        def verify() -> Verification:
            result = run_coverage(
                config.coverage_command,
                cwd=self.root,
                test_path=test_relative,
                timeout=config.command_timeout,
            )
            return Verification(
                success=is_coverage_improved(result, finding.uncovered_lines),
                output=result.output,
            )

        controller: Optional[RetryController] = None
        try:
            related = find_related_files(
                source_relative,
                source_content,
                root=self.root,
                client=self._client,
                purpose="write tests that improve coverage for this file",
                logs_root=config.logs_root,
            )

            def fix(previous: Verification) -> None:
                request = GenerateTestsRequest(
                    source_path=source_relative,
                    source_content=source_content,
                    test_path=test_relative,
                    finding=finding,
                    test_content=read_text_or_empty(test_path),
                    related_files=related,
                    previous_output=previous.output,
                )
                write_text(test_path, generate_tests(request, client=self._client, logs_root=config.logs_root))

            controller = RetryController(
                test_relative, verify=verify, fix=fix, cap=config.coverage_max_attempts
            )
            # The analysis already established low coverage, so the first step is a fix.
            attempt = controller.run(initial=Verification(success=False))
        except LLMClientError as error:
            LOGGER.error("Giving up on %s: %s", source_relative, error)
            return _item_from_attempt(
                source_relative,
                test_relative,
                controller.attempt if controller else None,
                error=str(error),
            )

        return _item_from_attempt(source_relative, test_relative, attempt)


__all__ = ["FixCoveragePipeline", "FixTestsPipeline", "ItemResult", "PipelineResult"]
