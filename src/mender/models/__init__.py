"""Convenience exports for mender LLM client implementations."""

from .llm_client import (
    LLMClient,
    LLMClientError,
    LLMMessage,
    LLMRequest,
    LLMResponseFormatError,
    LLMRetryError,
    LLMSchemaError,
    LLMTransportError,
)
from .responses import ResponsesClient

__all__ = [
    "LLMClient",
    "LLMClientError",
    "LLMMessage",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMRetryError",
    "LLMSchemaError",
    "LLMTransportError",
    "ResponsesClient",
]
