"""OpenRouter client (OpenAI-compatible API) for the remote chat model.

Usage:
    >>> client = OpenRouterClient(LLMConfig(api_key="sk-or-..."))
    >>> text = await client.chat([LLMMessage(role="user", content="Hello")])

    >>> # Streaming
    >>> async for fragment in client.stream(messages):
    ...     print(fragment, end="", flush=True)

Requirements:
    pip install openai
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from beruang.errors import StreamInterrupted
from beruang.llm.base import (
    LLMClientError,
    LLMConnectionError,
    LLMInvalidResponseError,
    LLMMessage,
    LLMModelNotFoundError,
    LLMTimeoutError,
)

logger = logging.getLogger(__name__)

EMPTY_COMPLETION_FALLBACK = "I couldn't generate a response."


@dataclass(frozen=True)
class LLMConfig:
    """Remote model settings.

    Attributes:
        base_url: OpenAI-compatible API root.
        model: Model identifier.
        api_key: OpenRouter key; None disables the remote model.
        stream_max_tokens: Token cap for streamed replies.
        chat_max_tokens: Token cap for the non-streaming fallback.
        temperature: Default sampling temperature.
        grounded_temperature: Temperature when answering from search
            results (place queries).
        timeout_s: Request timeout.
        app_title: ``X-Title`` header.
        referer: ``HTTP-Referer`` header.
    """

    base_url: str = "https://openrouter.ai/api/v1"
    model: str = "x-ai/grok-4.1-fast"
    api_key: Optional[str] = None
    stream_max_tokens: int = 500
    chat_max_tokens: int = 150
    temperature: float = 0.5
    grounded_temperature: float = 0.1
    timeout_s: float = 60.0
    app_title: str = "Beruang App"
    referer: str = "http://localhost:3000"

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def temperature_for(self, grounded: bool) -> float:
        return self.grounded_temperature if grounded else self.temperature


def translate_error(e: Exception) -> LLMClientError:
    """Map an ``openai`` SDK exception onto the LLM client error family."""
    if isinstance(e, openai.APITimeoutError):
        return LLMTimeoutError(f"remote model timed out: {e}")
    if isinstance(e, openai.APIConnectionError):
        return LLMConnectionError(f"cannot reach remote model: {e}")
    if isinstance(e, openai.NotFoundError):
        return LLMModelNotFoundError(f"remote model not found: {e}")
    if isinstance(e, openai.APIStatusError):
        return LLMInvalidResponseError(f"remote model returned HTTP {e.status_code}: {e}")
    return LLMInvalidResponseError(f"remote model request failed: {e}")


class OpenRouterClient:
    """Async chat client for OpenRouter.

    The underlying ``AsyncOpenAI`` client is created lazily and reused; it
    holds a connection pool and no per-request state.
    """

    def __init__(self, config: Optional[LLMConfig] = None, client: Optional[AsyncOpenAI] = None):
        self.config = config or LLMConfig()
        self._client = client

    @property
    def configured(self) -> bool:
        return self._client is not None or self.config.configured

    @property
    def model_name(self) -> str:
        return self.config.model

    def _get_client(self) -> AsyncOpenAI:
        if self._client is not None:
            return self._client
        if not self.config.configured:
            raise LLMConnectionError("remote model not configured (OPENROUTER_API_KEY is empty)")
        self._client = AsyncOpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key,
            timeout=self.config.timeout_s,
            default_headers={
                "HTTP-Referer": self.config.referer,
                "X-Title": self.config.app_title,
            },
        )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()

    async def chat(self, messages: List[LLMMessage], *, grounded: bool = False) -> str:
        """Single (non-streaming) completion.

        Raises:
            LLMClientError: Request failed.
        """
        client = self._get_client()
        t0 = time.perf_counter()
        try:
            completion = await client.chat.completions.create(
                model=self.config.model,
                messages=[m.to_dict() for m in messages],
                temperature=self.config.temperature_for(grounded),
                max_tokens=self.config.chat_max_tokens,
            )
        except openai.APIError as e:
            raise translate_error(e) from e

        try:
            content = completion.choices[0].message.content or ""
        except (AttributeError, IndexError) as e:
            raise LLMInvalidResponseError(f"malformed completion: {e}") from e

        logger.debug(
            "[LLM] chat model=%s total_ms=%d chars=%d",
            self.config.model, int((time.perf_counter() - t0) * 1000), len(content),
        )
        return content or EMPTY_COMPLETION_FALLBACK

    async def stream(self, messages: List[LLMMessage], *, grounded: bool = False) -> AsyncIterator[str]:
        """Stream text fragments in generation order.

        Closing the generator early (client disconnect) closes the upstream
        response.

        Raises:
            LLMClientError: The stream could not be opened.
            StreamInterrupted: The stream broke after it was opened.
        """
        client = self._get_client()
        t0 = time.perf_counter()
        try:
            response = await client.chat.completions.create(
                model=self.config.model,
                messages=[m.to_dict() for m in messages],
                temperature=self.config.temperature_for(grounded),
                max_tokens=self.config.stream_max_tokens,
                stream=True,
            )
        except openai.APIError as e:
            raise translate_error(e) from e

        delivered = 0
        ttft_ms: Optional[int] = None
        try:
            async for chunk in response:
                content = _delta_content(chunk)
                if not content:
                    continue
                if ttft_ms is None:
                    ttft_ms = int((time.perf_counter() - t0) * 1000)
                delivered += len(content)
                yield content
        except (openai.APIError, httpx.HTTPError) as e:
            raise StreamInterrupted(f"remote stream closed early: {e}", delivered=delivered) from e
        finally:
            await response.close()
            logger.debug(
                "[LLM] stream model=%s ttft_ms=%s total_ms=%d chars=%d",
                self.config.model, ttft_ms if ttft_ms is not None else -1,
                int((time.perf_counter() - t0) * 1000), delivered,
            )


def _delta_content(chunk: Any) -> str:
    choices = getattr(chunk, "choices", None)
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    return (getattr(delta, "content", None) or "") if delta is not None else ""
