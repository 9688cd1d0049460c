"""Whole-file read/write helpers scoped to a target root."""

from __future__ import annotations

from pathlib import Path


def resolve_under_root(root: Path, candidate: str | Path) -> Path:
    """Resolve ``candidate`` against ``root`` unless it is already absolute."""
    path = Path(candidate)
    if path.is_absolute():
        return path
    root_text = root.as_posix().rstrip("/")
    candidate_text = path.as_posix()
    if root_text not in {"", "."} and candidate_text.startswith(f"{root_text}/"):
        return path
    return root / path


def is_within_root(root: Path, candidate: str | Path) -> bool:
    """Return True when ``candidate`` resolves to a location inside ``root``."""
    resolved = resolve_under_root(root, candidate).resolve()
    try:
        resolved.relative_to(root.resolve())
    except ValueError:
        return False
    return True


def read_text(path: Path) -> str:
    """Return the UTF-8 content of ``path``."""
    return path.read_text(encoding="utf-8")


def read_text_or_empty(path: Path) -> str:
    """Return the content of ``path`` or an empty string when it does not exist."""
    try:
        return read_text(path)
    except FileNotFoundError:
        return ""


def write_text(path: Path, content: str) -> None:
    """Replace ``path`` with ``content``, creating parent directories as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


__all__ = ["is_within_root", "read_text", "read_text_or_empty", "resolve_under_root", "write_text"]
