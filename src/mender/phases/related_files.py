"""Find Related Files phase: ask the model which files give context for a target."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from ..models.llm_client import LLMClient, LLMMessage
from ..prompts import render_file_section
from ..tools.files import is_within_root, read_text, resolve_under_root
from . import PhaseName
from .base import invoke_phase

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RelatedFile:
    """Readable file the model considers relevant context."""

    file_path: str
    content: str


@dataclass(slots=True)
class RelatedFilesResponse:
    """Structured result returned by the Find Related Files phase."""

    paths: list[str] = field(default_factory=list)


def build_messages(file_path: str, content: str, purpose: str) -> list[LLMMessage]:
    prompt = (
        f"I need to find related files to help {purpose}.\n\n"
        f"{render_file_section('Target File', file_path, content)}\n\n"
        "Identify the repository files needed to understand this file. "
        "Return them under `paths`, most relevant first."
    )
    return [LLMMessage(role="user", content=prompt)]


def find_related_files(
    file_path: str,
    content: str,
    *,
    root: Path,
    client: LLMClient,
    purpose: str = "fix this file",
    logs_root: Path | None = None,
) -> list[RelatedFile]:
    """Return the readable files the model links to ``file_path``.

    Candidate order from the model is preserved. Only readable, non-empty
    files under ``root`` are kept; suggesting missing paths is expected.
    """
    response = invoke_phase(
        PhaseName.FIND_RELATED_FILES.value,
        build_messages(file_path, content, purpose),
        RelatedFilesResponse,
        client=client,
        subject=file_path,
        logs_root=logs_root,
    )
    LOGGER.info("Model suggested %d related file(s) for %s", len(response.paths), file_path)

    related: list[RelatedFile] = []
    seen: set[Path] = set()
    for candidate in response.paths:
        if not candidate or not candidate.strip():
            continue
        resolved = resolve_under_root(root, candidate.strip())
        if resolved in seen:
            continue
        seen.add(resolved)
        if not is_within_root(root, resolved):
            LOGGER.info("Skipping related file %s: outside of %s", resolved, root)
            continue
        try:
            text = read_text(resolved)
        except (OSError, UnicodeDecodeError) as error:
            LOGGER.info("Skipping related file %s: %s", resolved, error)
            continue
        if not text:
            continue
        related.append(RelatedFile(file_path=resolved.as_posix(), content=text))
    return related


__all__ = ["RelatedFile", "RelatedFilesResponse", "build_messages", "find_related_files"]
