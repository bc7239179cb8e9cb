"""Production client that speaks the Anthropic Messages API."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["AnthropicClient", "MessagesResponse", "TransportResponse"]

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"
MESSAGES_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"


class TransportResponse(BaseModel):
    """HTTP status and body returned by a transport."""

    status: int
    body: str


Transport = Callable[[Dict[str, Any], Dict[str, str]], TransportResponse]


class ContentBlock(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    text: Optional[str] = None


class MessagesResponse(BaseModel):
    """Subset of the Messages API response body that the pipeline relies on."""

    model_config = ConfigDict(extra="allow")

    content: List[ContentBlock] = []
    stop_reason: Optional[str] = None

    def text(self) -> str:
        return "".join(block.text or "" for block in self.content if block.type == "text")


class AnthropicClient(LLMClient):
    """Thin adapter around the Anthropic Messages API."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = MESSAGES_URL,
        model: str = DEFAULT_MODEL,
        transport: Optional[Transport] = None,
        timeout: float = 300.0,
    ) -> None:
        super().__init__(model=model)
        self._api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    def _headers(self) -> Dict[str, str]:
        return {
            "content-type": "application/json",
            "x-api-key": self._api_key or "",
            "anthropic-version": API_VERSION,
        }

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send the request and return the concatenated text blocks."""
        try:
            response = self._transport(payload, self._headers())
        except LLMTransportError:
            raise
        except Exception as error:
            raise LLMTransportError(f"Transport rejected the request: {error!r}") from error

        if response.status >= 400:
            message = _error_message(response.body)
            LOGGER.warning("Messages API returned HTTP %s: %s", response.status, message)
            raise LLMTransportError(
                f"Anthropic API error: {response.status} - {message}",
                status=response.status,
                body=response.body,
            )

        try:
            parsed = MessagesResponse.model_validate_json(response.body or "{}")
        except ValidationError as error:
            raise LLMResponseFormatError(
                f"Messages API returned an unexpected payload: {response.body[:200]}",
                status=response.status,
                body=response.body,
            ) from error
        return parsed.text()

    def _http_transport(self, payload: Dict[str, Any], headers: Dict[str, str]) -> TransportResponse:
        """Default HTTP transport that targets the Messages API."""
        import urllib.error
        import urllib.request

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers=headers,
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Messages API response timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            body = error.read().decode("utf-8", errors="ignore")
            return TransportResponse(status=error.code, body=body)
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach Messages API: {error.reason}") from error

        return TransportResponse(status=status, body=raw.decode("utf-8", errors="replace"))


def _error_message(body: str) -> str:
    """Pull ``error.message`` out of an error body, falling back to the raw text."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        return body.strip() or "no response body"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
    return json.dumps(data)
