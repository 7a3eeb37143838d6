"""Streaming delivery."""

from beruang.stream.events import EventType, StreamEvent
from beruang.stream.orchestrator import (
    ChatOrchestrator,
    ChatResult,
    ChatTurn,
    GatheredContext,
    StreamConfig,
    TaskOutcome,
)

__all__ = [
    "ChatOrchestrator",
    "ChatResult",
    "ChatTurn",
    "EventType",
    "GatheredContext",
    "StreamConfig",
    "StreamEvent",
    "TaskOutcome",
]
