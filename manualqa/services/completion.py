"""
Completion Service

Client for an OpenAI-compatible chat completions endpoint (Groq by
default). Used both for answer generation and for the completion-backed
embedding path.

Design:
    - Async HTTP calls via httpx (non-blocking).
    - Requests are described by an explicit CompletionRequest value
      instead of loose dicts.
    - Any transport error, timeout or non-2xx status becomes
      GenerationFailed. Nothing is retried here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

import httpx

from manualqa.core.config import settings
from manualqa.core.errors import GenerationFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatMessage:
    """One message of a chat completion conversation."""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class CompletionRequest:
    """
    Everything the completion endpoint accepts from this pipeline.

    Attributes:
        messages: Ordered conversation, system instruction first.
        model: Model identifier understood by the provider.
        temperature: Sampling temperature.
        max_tokens: Upper bound on generated tokens.
        top_p: Nucleus sampling cutoff (omitted from the payload if None).
    """

    messages: tuple[ChatMessage, ...]
    model: str
    temperature: float = 0.3
    max_tokens: int = 1000
    top_p: float | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role, "content": m.content} for m in self.messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "stream": False,
        }
        if self.top_p is not None:
            payload["top_p"] = self.top_p
        return payload


class CompletionService:
    """
    Async chat completion client.

    Usage::

        service = CompletionService()
        text = await service.complete(
            CompletionRequest(
                messages=(ChatMessage("user", "Hello"),),
                model="llama-3.1-8b-instant",
            )
        )
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the completion client.

        Args:
            base_url: API base URL (default from config).
            api_key: Bearer token (default from config).
            timeout: Request timeout in seconds (default from config).
            transport: Optional httpx transport, used by tests.
        """
        self._base_url = (base_url or settings.COMPLETION_BASE_URL).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.COMPLETION_API_KEY
        self._timeout = timeout or settings.COMPLETION_TIMEOUT
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        """True when an API key is available (``mock`` counts as absent)."""
        return bool(self._api_key) and self._api_key != "mock"

    async def complete(self, request: CompletionRequest) -> str | None:
        """
        Issue one chat completion request.

        Returns:
            The first choice's message content, or None when the service
            answered without any content.

        Raises:
            GenerationFailed: On missing configuration, transport errors,
                timeouts, error statuses or an unreadable response body.
        """
        if not self.is_configured:
            raise GenerationFailed(
                "Completion service is not configured (COMPLETION_API_KEY is missing)"
            )

        content = _first_content(await self._post(request.to_payload()))

        logger.info(
            "Completion generated (model=%s, length=%d)",
            request.model,
            len(content or ""),
        )
        return content or None

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Completion request timed out after %.1fs", self._timeout)
            raise GenerationFailed("The answer generation service timed out") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "Completion API error %d: %s",
                e.response.status_code,
                e.response.text[:200],
            )
            raise GenerationFailed(
                f"The answer generation service returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Completion service unreachable (%s): %s", type(e).__name__, e)
            raise GenerationFailed("The answer generation service is unreachable") from e
        except ValueError as e:
            raise GenerationFailed("Completion service returned invalid JSON") from e

        if not isinstance(data, dict):
            raise GenerationFailed("Completion service returned a malformed response")
        return data

    async def health_check(self) -> bool:
        """
        Check if the completion API is reachable with the configured key.

        Returns:
            True if the models listing responds with 200, False otherwise.
        """
        if not self.is_configured:
            return False
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/models",
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                return response.status_code == 200
        except httpx.HTTPError:
            return False


def _first_content(data: Any) -> str | None:
    """First choice's message content; None when the service sent no choices."""
    if not isinstance(data, dict):
        raise GenerationFailed("Completion service returned a malformed response")
    choices = data.get("choices") or []
    if not isinstance(choices, list):
        raise GenerationFailed("Completion service returned a malformed response")
    if not choices:
        return None

    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(message, dict) or not isinstance(content, (str, type(None))):
        raise GenerationFailed("Completion service returned a malformed response")
    return content
