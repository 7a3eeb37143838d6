from __future__ import annotations

from .base import (
    LLMClientError,
    LLMClientProtocol,
    LLMConnectionError,
    LLMInvalidResponseError,
    LLMMessage,
    LLMModelNotFoundError,
    LLMTimeoutError,
)
from .openrouter_client import LLMConfig, OpenRouterClient
from .prompts import SYSTEM_INSTRUCTION, PromptContext, build_messages

__all__ = [
    "LLMClientError",
    "LLMClientProtocol",
    "LLMConfig",
    "LLMConnectionError",
    "LLMInvalidResponseError",
    "LLMMessage",
    "LLMModelNotFoundError",
    "LLMTimeoutError",
    "OpenRouterClient",
    "PromptContext",
    "SYSTEM_INSTRUCTION",
    "build_messages",
]
