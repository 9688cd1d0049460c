"""Analyze Coverage phase: turn a raw coverage report into structured findings."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..models.llm_client import LLMClient, LLMMessage
from ..prompts import code_block
from . import PhaseName
from .base import invoke_phase

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class CoverageFinding:
    """Coverage deficiency reported for a single source file."""

    file_path: str
    statements: float
    branches: float
    functions: float
    lines: float
    uncovered_lines: str


@dataclass(slots=True)
class CoverageAnalysisResponse:
    """Structured result returned by the Analyze Coverage phase."""

    files: list[CoverageFinding] = field(default_factory=list)


def build_messages(report_text: str, threshold: float) -> list[LLMMessage]:
    threshold_label = f"{threshold:g}"
    prompt = (
        "Please analyze this test coverage report and identify files that don't meet the coverage "
        f"threshold of {threshold_label}%.\n\n"
        f"{code_block(report_text)}\n\n"
        f"Extract the data for files with less than {threshold_label}% coverage in any category "
        "(statements, branches, functions, or lines). Report each file under `files` with "
        "file_path, statements, branches, functions, lines and uncovered_lines."
    )
    return [LLMMessage(role="user", content=prompt)]


def analyze_coverage(
    report_text: str,
    threshold: float,
    *,
    client: LLMClient,
    logs_root: Path | None = None,
) -> list[CoverageFinding]:
    """Return the low-coverage findings the model extracts from ``report_text``.

    Schema failures raise ``LLMSchemaError``; nothing is retried here.
    Findings that repeat an earlier ``file_path`` are dropped.
    """
    response = invoke_phase(
        PhaseName.ANALYZE_COVERAGE.value,
        build_messages(report_text, threshold),
        CoverageAnalysisResponse,
        client=client,
        subject="coverage-report",
        logs_root=logs_root,
    )

    findings: list[CoverageFinding] = []
    seen: set[str] = set()
    for finding in response.files:
        key = finding.file_path.strip()
        if not key or key in seen:
            LOGGER.debug("Skipping duplicate or empty finding %r", finding.file_path)
            continue
        seen.add(key)
        findings.append(finding)
    return findings


__all__ = ["CoverageAnalysisResponse", "CoverageFinding", "analyze_coverage", "build_messages"]
