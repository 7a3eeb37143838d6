"""LLM Client Interface - abstraction over the remote chat model.

The orchestrator only needs two things from a remote model:

- ``chat()``: single completion (non-streaming fallback)
- ``stream()``: incrementally produced text fragments

Design goals:
- One async interface for the streaming and non-streaming paths
- Easy to test (scripted fake clients)
- Consistent error handling: every failure is an ``UpstreamFailure``,
  a transport that dies after the stream opened is ``StreamInterrupted``
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, List, Protocol

from beruang.errors import UpstreamFailure


@dataclass(frozen=True)
class LLMMessage:
    """Standard message format for all LLM clients."""
    role: str  # "system" | "user" | "assistant"
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class LLMClientError(UpstreamFailure):
    """Base exception for LLM client errors."""
    pass


class LLMConnectionError(LLMClientError):
    """Server connection failed (or no API key configured)."""
    pass


class LLMModelNotFoundError(LLMClientError):
    """Requested model not available."""
    pass


class LLMTimeoutError(LLMClientError):
    """Request timed out."""
    pass


class LLMInvalidResponseError(LLMClientError):
    """Response parsing failed or the API returned an error status."""
    pass


class LLMClientProtocol(Protocol):
    """Protocol for type checking (duck typing).

    ``stream()`` raises ``LLMClientError`` if the stream cannot be opened
    and ``StreamInterrupted`` if it breaks after opening.
    """

    @property
    def configured(self) -> bool:
        ...

    @property
    def model_name(self) -> str:
        ...

    async def chat(
        self,
        messages: List[LLMMessage],
        *,
        grounded: bool = False,
    ) -> str:
        ...

    def stream(
        self,
        messages: List[LLMMessage],
        *,
        grounded: bool = False,
    ) -> AsyncIterator[str]:
        ...
