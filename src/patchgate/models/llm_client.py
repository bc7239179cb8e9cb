"""Client base class shared by all text-generation integrations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from patchgate.errors import ExternalServiceFailure

__all__ = [
    "GenerationRequest",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
]

DEFAULT_MAX_TOKENS = 2200


class LLMClientError(ExternalServiceFailure):
    """Base error raised for generation client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails or returns a non-success status."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the service answers without any usable text."""


@dataclass(slots=True)
class GenerationRequest:
    """Plain-text request sent to a generation service."""

    prompt: str
    system: Optional[str] = None
    model: Optional[str] = None
    max_tokens: int = DEFAULT_MAX_TOKENS
    temperature: Optional[float] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready Messages API payload."""
        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": self.prompt}],
        }
        if self.system and self.system.strip():
            payload["system"] = self.system
        if self.temperature is not None:
            payload["temperature"] = self.temperature
        return payload


class LLMClient:
    """High-level helper that turns a request into the raw response text."""

    def __init__(self, model: str) -> None:
        self._model = model

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def generate(self, request: GenerationRequest) -> str:
        """Invoke the underlying model and return its full text output."""
        payload = request.to_payload(self._model)
        text = self._raw_invoke(payload)
        if not text or not text.strip():
            raise LLMResponseFormatError(
                f"Model {payload['model']} returned an empty response."
            )
        return text

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
