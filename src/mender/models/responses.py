"""Production client that speaks the JSON Responses API."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Optional

from .llm_client import LLMClient, LLMClientError, LLMResponseFormatError, LLMTransportError

__all__ = ["DEFAULT_BASE_URL", "ResponsesClient"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1/responses"

# Statuses worth another attempt; any other 4xx is a request problem.
_RETRYABLE_STATUS = frozenset({408, 409, 429})

Transport = Callable[[Dict[str, Any]], str]


def _timeout_from_env(default: float) -> float:
    value = os.getenv("MENDER_LLM_TIMEOUT")
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        LOGGER.warning("Ignoring invalid MENDER_LLM_TIMEOUT value %r", value)
        return default
    return parsed if parsed > 0 else default


class ResponsesClient(LLMClient):
    """Client for a Responses-compatible HTTP endpoint.

    ``transport`` replaces the HTTP call entirely, which is how tests feed
    canned response bodies. Without one an API key is mandatory.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "gpt-5-mini",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
        max_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        super().__init__(model=model, max_attempts=max_attempts, retry_delay=retry_delay)
        self._api_key = api_key or os.getenv("MENDER_API_KEY") or os.getenv("OPENAI_API_KEY")
        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")
        self._base_url = base_url
        self._timeout = _timeout_from_env(timeout)
        self._transport = transport or self._post

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        try:
            body = self._transport(payload)
        except LLMClientError:
            raise
        except Exception as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        text = self._extract_model_payload(body)
        if text is None:
            raise LLMResponseFormatError("Response did not contain JSON output text.")
        return text

    def _post(self, payload: Dict[str, Any]) -> str:
        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("POST %s\n%s", self._base_url, json.dumps(payload, indent=2, sort_keys=True))

        request = urllib.request.Request(
            self._base_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json", "Authorization": f"Bearer {self._api_key}"},
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                return response.read().decode("utf-8")
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            detail = error.read().decode("utf-8", errors="ignore")
            message = f"HTTP {error.code} from {self._base_url}: {detail}"
            if error.code in _RETRYABLE_STATUS or error.code >= 500:
                raise LLMTransportError(message) from error
            raise LLMClientError(message) from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach {self._base_url}: {error.reason}") from error
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"No response from {self._base_url} within {self._timeout:g}s") from error

    @staticmethod
    def _extract_model_payload(raw_response: str) -> Optional[str]:
        """Return the model's JSON text from a Responses API body.

        The first ``output_json`` or ``output_text`` block found in a
        ``message`` item wins. Bodies that are not a Responses envelope are
        returned unchanged for the JSON parser to handle.
        """
        if not raw_response:
            return None
        try:
            body = json.loads(raw_response)
        except json.JSONDecodeError:
            return raw_response
        if not isinstance(body, dict) or not isinstance(body.get("output"), list):
            return raw_response

        for item in body["output"]:
            if not isinstance(item, dict) or item.get("type") != "message":
                continue
            for block in item.get("content") or []:
                if not isinstance(block, dict):
                    continue
                if block.get("type") == "output_json" and isinstance(block.get("json"), (dict, list)):
                    return json.dumps(block["json"])
                if block.get("type") == "output_text" and str(block.get("text", "")).strip():
                    return block["text"]
        return None
