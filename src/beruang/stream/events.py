"""Client-facing stream events.

Wire format (Server-Sent Events)::

    event: thinking   data: {"message": "Processing your request..."}
    event: token      data: {"content": "Got ", "done": false}
    event: heartbeat  data: {"status": "alive"}
    event: done       data: {"source": "local", "response_time_ms": 212, "intent": "GREETING"}
    event: error      data: {"error": "Stream failed 🐻💔"}

Every stream ends with exactly one ``done`` or ``error`` event.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

THINKING_MESSAGE = "Processing your request..."
STREAM_FAILED_MESSAGE = "Stream failed 🐻💔"


class EventType(str, Enum):
    THINKING = "thinking"
    TOKEN = "token"
    HEARTBEAT = "heartbeat"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    """One event on the client stream."""

    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in (EventType.DONE, EventType.ERROR)

    def to_sse(self) -> Dict[str, str]:
        """Dict accepted by ``sse_starlette.EventSourceResponse``."""
        return {"event": self.type.value, "data": json.dumps(self.data, ensure_ascii=False)}

    @classmethod
    def thinking(cls, message: str = THINKING_MESSAGE) -> "StreamEvent":
        return cls(EventType.THINKING, {"message": message})

    @classmethod
    def token(cls, content: str) -> "StreamEvent":
        return cls(EventType.TOKEN, {"content": content, "done": False})

    @classmethod
    def heartbeat(cls) -> "StreamEvent":
        return cls(EventType.HEARTBEAT, {"status": "alive"})

    @classmethod
    def done(
        cls,
        source: str,
        response_time_ms: int,
        *,
        intent: Optional[str] = None,
        partial: bool = False,
    ) -> "StreamEvent":
        data: Dict[str, Any] = {"source": source, "response_time_ms": response_time_ms}
        if intent:
            data["intent"] = intent
        if partial:
            data["partial"] = True
        return cls(EventType.DONE, data)

    @classmethod
    def error(cls, message: str = STREAM_FAILED_MESSAGE) -> "StreamEvent":
        return cls(EventType.ERROR, {"error": message})
