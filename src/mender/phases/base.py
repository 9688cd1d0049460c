"""Shared helpers for invoking phases and emitting structured logs."""

from __future__ import annotations

import hashlib
import json
import logging
import re
import uuid
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence, TypeVar

from ..models.llm_client import LLMClient, LLMClientError, LLMMessage, LLMRequest
from ..prompts import render_system_prompt

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


def invoke_phase(
    phase: str,
    messages: Sequence[LLMMessage],
    response_model: type[T],
    *,
    client: LLMClient,
    subject: str = "",
    logs_root: Path | None = None,
) -> T:
    """Common helper used by the phase modules to call the LLM client.

    ``subject`` names the file the call is about and is only used for logging.
    """
    llm_request = LLMRequest(
        messages=list(messages),
        system_prompt=render_system_prompt(phase),
        response_model=response_model,
        metadata={"phase": phase, "subject": subject} if subject else {"phase": phase},
    )
    attempts: list[dict[str, Any]] = []

    def _attempt_logger(
        payload: dict[str, Any],
        raw: str | None,
        parsed: Any,
        error: Exception | None,
        attempt: int,
    ) -> None:
        if error is not None:
            LOGGER.warning("Phase %s attempt %d for %s failed: %s", phase, attempt, subject or "-", error)
        attempts.append(
            {
                "attempt": attempt,
                "model": payload.get("model"),
                "raw": raw,
                "parsed": _json_safe(parsed),
                "error": str(error) if error else None,
            }
        )

    LOGGER.debug("Invoking phase %s for %s", phase, subject or "-")
    try:
        result, _ = client.invoke_structured(llm_request, logger=_attempt_logger)
    except LLMClientError as error:
        _write_phase_log(logs_root, phase, subject, llm_request, attempts, error=error)
        raise

    _write_phase_log(logs_root, phase, subject, llm_request, attempts, result=result)
    return result


def _write_phase_log(
    logs_root: Path | None,
    phase: str,
    subject: str,
    llm_request: LLMRequest[Any],
    attempts: list[dict[str, Any]],
    *,
    result: Any | None = None,
    error: Exception | None = None,
) -> None:
    """Persist a structured phase execution log for later debugging."""
    if logs_root is None:
        return
    phases_root = logs_root / "phases"
    try:
        phases_root.mkdir(parents=True, exist_ok=True)
    except OSError:
        return

    timestamp = datetime.now(timezone.utc)
    entry: dict[str, Any] = {
        "timestamp": timestamp.isoformat(),
        "phase": phase,
        "subject": subject,
        "context": {
            "system_prompt": llm_request.system_prompt,
            "messages": [asdict(message) for message in llm_request.messages],
            "metadata": _json_safe(llm_request.metadata),
        },
        "attempts": attempts,
    }
    if result is not None:
        entry["result"] = _json_safe(result)
    if error is not None:
        entry["error"] = str(error)

    parts = ["phase", _slug(phase, fallback="phase")]
    if subject:
        parts.append(_slug(subject))
    parts.append(timestamp.strftime("%Y%m%dT%H%M%S%fZ"))
    parts.append(uuid.uuid4().hex[:8])
    log_path = phases_root / ("__".join(parts) + ".json")
    try:
        with log_path.open("w", encoding="utf-8") as handle:
            json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
    except OSError:
        LOGGER.debug("Could not write phase log %s", log_path, exc_info=True)


def _json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if isinstance(value, dict):
        return {str(key): _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


def _slug(value: str, *, fallback: str = "item", max_length: int = 80) -> str:
    """Normalise identifiers for use in log filenames."""
    cleaned = re.sub(r"[^A-Za-z0-9]+", "-", value).strip("-")
    slug = cleaned or fallback
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix_length = max(max_length - len(digest) - 1, 1)
    prefix = slug[:prefix_length].rstrip("-") or slug[:prefix_length]
    return f"{prefix}-{digest}"
