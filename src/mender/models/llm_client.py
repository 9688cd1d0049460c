"""Typed client base class shared by all language-model integrations."""

from __future__ import annotations

import ast
import json
import re
import time
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, Generic, Optional, Sequence, Type, TypeVar

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMMessage",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMSchemaError",
    "LLMTransportError",
]


T = TypeVar("T")

AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Any], Optional[Exception], int], None]


def _close_schema(value: Any) -> Any:
    """Recursively tighten JSON Schema objects to disallow unknown keys."""
    if isinstance(value, dict):
        schema_type = value.get("type")
        if schema_type == "object":
            value["additionalProperties"] = False
            properties = value.get("properties")
            if isinstance(properties, dict):
                required = value.get("required")
                all_keys = list(properties.keys())
                if not isinstance(required, list):
                    required = all_keys
                else:
                    missing = [key for key in all_keys if key not in required]
                    if missing:
                        required.extend(missing)
                value["required"] = required
                for key, child in list(properties.items()):
                    properties[key] = _close_schema(child)
        for key, child in list(value.items()):
            if key == "properties":
                continue
            value[key] = _close_schema(child)
    elif isinstance(value, list):
        return [_close_schema(item) for item in value]
    return value


class LLMClientError(RuntimeError):
    """Base error raised for structured LLM client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the model returns payload that is not valid JSON."""


class LLMSchemaError(LLMClientError):
    """Raised when the model returns JSON that does not match the response schema."""


class LLMRetryError(LLMClientError):
    """Raised after exhausting transport retries."""


@dataclass(slots=True, frozen=True)
class LLMMessage:
    """Single role-tagged message in a generation request."""

    role: str
    content: str


@dataclass(slots=True)
class LLMRequest(Generic[T]):
    """Typed request payload sent to an LLM.

    ``messages`` are sent in order after the optional system prompt.
    """

    messages: Sequence[LLMMessage]
    response_model: Type[T]
    system_prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def json_schema(self) -> Dict[str, Any]:
        """Return the strict JSON schema describing ``response_model``."""
        return _close_schema(_cached_type_adapter(self.response_model).json_schema())

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the JSON responses API."""
        def _message(role: str, text: str) -> Dict[str, Any]:
            return {
                "role": role,
                "content": [
                    {
                        "type": "input_text",
                        "text": text,
                    }
                ],
            }

        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append(_message("system", self.system_prompt))
        for message in self.messages:
            messages.append(_message(message.role, message.content))

        schema_name = getattr(self.response_model, "__name__", "mender_response")
        payload: Dict[str, Any] = {
            "model": default_model,
            "input": messages,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": self.json_schema(),
                    "strict": True,
                }
            },
        }
        if self.metadata:
            max_metadata_len = 512
            serialised_metadata: Dict[str, Any] = {}
            for key, value in self.metadata.items():
                formatted: str
                if isinstance(value, str):
                    formatted = value
                else:
                    formatted = json.dumps(value, separators=(",", ":"), sort_keys=True)
                if len(formatted) > max_metadata_len:
                    formatted = f"{formatted[: max_metadata_len - 3]}..."
                serialised_metadata[key] = formatted
            payload["metadata"] = serialised_metadata
        return payload


class LLMClient:
    """High-level helper that enforces JSON responses and schema validation.

    Only transport failures are retried here. A response that is not JSON or
    does not match the schema is raised immediately; callers own any retry
    policy beyond that.
    """

    def __init__(self, model: str, *, max_attempts: int = 3, retry_delay: float = 0.5) -> None:
        self._model = model
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def invoke(self, request: LLMRequest[T]) -> T:
        """Invoke the underlying model and return a validated response."""
        result, _ = self.invoke_structured(request)
        return result

    def invoke_structured(
        self,
        request: LLMRequest[T],
        *,
        logger: Optional[AttemptLogger] = None,
    ) -> tuple[T, Any]:
        """Invoke the model and return both the structured response and parsed payload."""
        payload = request.to_payload(self._model)
        last_error: Optional[Exception] = None

        for attempt in range(1, self._max_attempts + 1):
            raw: Optional[str] = None
            data: Optional[Any] = None
            try:
                raw = self._raw_invoke(payload)
                data = self._parse_json(raw)
                validated = _cached_type_adapter(request.response_model).validate_python(data)
            except LLMTransportError as error:
                last_error = error
                if logger:
                    logger(payload, raw, data, error, attempt)
                if attempt >= self._max_attempts:
                    break
                time.sleep(self._retry_delay)
                continue
            except LLMResponseFormatError as error:
                if logger:
                    logger(payload, raw, data, error, attempt)
                raise
            except ValidationError as error:
                schema_error = LLMSchemaError(
                    f"Response did not match {getattr(request.response_model, '__name__', 'schema')}: "
                    f"{error.error_count()} validation error(s)"
                )
                if logger:
                    logger(payload, raw, data, schema_error, attempt)
                raise schema_error from error

            if logger:
                logger(payload, raw, data, None, attempt)
            return validated, data

        error_message = (
            f"Transport failed after {self._max_attempts} attempt(s) for model "
            f"{self._model}"
        )
        raise LLMRetryError(error_message) from last_error

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    @staticmethod
    def _parse_json(raw_response: str) -> Any:
        """Parse JSON payloads and normalize errors."""
        text = raw_response.strip()
        if not text:
            raise LLMResponseFormatError("Model returned an empty response.")

        # Generated code travels inside JSON strings, so the untouched text is tried first.
        candidates = [text]
        repaired = _repair_json_payload(text)
        if repaired and repaired not in candidates:
            candidates.append(repaired)
        for candidate in list(candidates):
            normalised = _normalise_json_string(candidate)
            if normalised not in candidates:
                candidates.append(normalised)

        for candidate in candidates:
            try:
                return json.loads(candidate)
            except json.JSONDecodeError:
                continue

        for candidate in candidates:
            pythonic = _coerce_python_literal(candidate)
            if pythonic is not None:
                return pythonic

        snippet = text[:200]
        raise LLMResponseFormatError(f"Model returned invalid JSON: {snippet}")


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    if not payload.startswith("```"):
        return payload
    fence_header_match = re.match(r"```(?:json)?", payload[:10], re.IGNORECASE)
    if not fence_header_match:
        return payload
    fence_end = payload.find("```", len(fence_header_match.group(0)))
    if fence_end == -1:
        return payload
    content_start = payload.find("\n", len(fence_header_match.group(0)))
    if content_start == -1:
        return payload
    return payload[content_start + 1 : fence_end].strip()


def _normalise_json_string(payload: str) -> str:
    """Normalise typographic quotes and spaces emitted by models outside of strings."""
    if not payload:
        return payload
    translation = {
        0x201C: '"',
        0x201D: '"',
        0x00A0: " ",
        0xFEFF: "",
    }
    return payload.translate(str.maketrans(translation))


def _strip_trailing_commas(payload: str) -> str:
    """Remove trailing commas before closing braces/brackets."""
    if not payload:
        return payload
    return re.sub(r",(\s*[}\]])", r"\1", payload)


def _repair_json_payload(raw: str) -> str | None:
    """Attempt to salvage a JSON object embedded in noisy output."""
    stripped = _strip_code_fence(raw.strip())
    if not stripped:
        return None

    try:
        json.loads(stripped)
    except json.JSONDecodeError:
        pass
    else:
        return stripped

    opening_idx = None
    expected: list[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(stripped):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"' and opening_idx is not None:
            in_string = True
        elif char in "{[":
            if opening_idx is None:
                opening_idx = index
            expected.append("}" if char == "{" else "]")
        elif expected and char == expected[-1]:
            expected.pop()
            if not expected and opening_idx is not None:
                candidate = stripped[opening_idx : index + 1]
                return _strip_trailing_commas(candidate.strip())
    return None


def _coerce_python_literal(candidate: str) -> Any | None:
    """Fall back to Python literal parsing when JSON decoding fails."""
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, TypeError, ValueError):
        return None
    return _normalise_literal(literal)


def _normalise_literal(value: Any) -> Any:
    """Convert Python literals into JSON-compatible structures recursively."""
    if isinstance(value, dict):
        return {str(key): _normalise_literal(sub) for key, sub in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalise_literal(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


@lru_cache(maxsize=None)
def _cached_type_adapter(annotation: Any) -> TypeAdapter:
    """Reuse `TypeAdapter` instances across invocations."""
    return TypeAdapter(annotation)
