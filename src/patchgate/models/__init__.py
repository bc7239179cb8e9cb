"""Convenience exports for patchgate generation client implementations."""

from .anthropic import AnthropicClient
from .llm_client import (
    GenerationRequest,
    LLMClient,
    LLMClientError,
    LLMResponseFormatError,
    LLMTransportError,
)

__all__ = [
    "AnthropicClient",
    "GenerationRequest",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
]
