"""Pydantic models for the Beruang REST API.

Request and response schemas for all API endpoints.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from beruang.llm.base import LLMMessage


# ─────────────────────────────────────────────────────────────
# Chat
# ─────────────────────────────────────────────────────────────

class HistoryPart(BaseModel):
    """One text part of a history item (``{"text": "..."}``)."""

    text: str = ""


class HistoryItem(BaseModel):
    """A previous conversation turn.

    Accepts both ``{role, content}`` and ``{role, parts: [{text}]}``;
    role ``model`` is treated as ``assistant``.
    """

    role: str = Field(..., description="user | assistant | model")
    content: Optional[str] = Field(default=None, description="Turn text")
    parts: Optional[List[HistoryPart]] = Field(default=None, description="Turn text parts")

    def to_message(self) -> LLMMessage:
        role = "assistant" if self.role.strip().lower() in ("model", "assistant") else "user"
        if self.content is not None:
            text = self.content
        else:
            text = "".join(p.text for p in self.parts or [])
        return LLMMessage(role=role, content=text)


class ChatRequest(BaseModel):
    """POST /api/v1/chat and /api/v1/chat/stream request body."""

    message: str = Field(..., min_length=1, max_length=4096, description="User message")
    history: List[HistoryItem] = Field(default_factory=list, description="Previous turns, oldest first")
    user_profile: Optional[Dict[str, Any]] = Field(
        default=None,
        validation_alias=AliasChoices("user_profile", "userProfile"),
        description="Name, age, state, monthlyIncome, financialGoals",
    )
    budget_context: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("budget_context", "budgetContext"),
        description="Pre-computed budget summary",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "message": "hi beruang",
                    "history": [{"role": "model", "parts": [{"text": "Hello! 🐻"}]}],
                }
            ]
        }
    }


class ChatResponse(BaseModel):
    """POST /api/v1/chat response body."""

    ok: bool = Field(..., description="Whether the request succeeded")
    response: str = Field(..., description="Assistant reply text")
    source: str = Field(..., description="local | remote")
    intent: Optional[str] = Field(default=None, description="Predicted intent")
    reason: Optional[str] = Field(default=None, description="Why the message went remote")
    response_time_ms: int = Field(..., description="Processing time")
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "ok": True,
                    "response": "Got it, I'll track that 🐻",
                    "source": "local",
                    "intent": "LOG_EXPENSE",
                    "response_time_ms": 42,
                }
            ]
        }
    }


class RouteResponse(BaseModel):
    """GET /api/v1/route response body."""

    ok: bool = Field(default=True)
    message: str
    decision: Dict[str, Any]
    place_query: bool = False


class ErrorResponse(BaseModel):
    """Standard error response."""

    ok: bool = Field(default=False)
    error: str = Field(..., description="Error message")
    code: str = Field(default="internal_error", description="Error code")
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())


# ─────────────────────────────────────────────────────────────
# Health
# ─────────────────────────────────────────────────────────────

class ComponentStatus(str, Enum):
    """Status of an individual component."""

    OK = "ok"
    DEGRADED = "degraded"
    DOWN = "down"


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    name: str
    status: ComponentStatus
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """GET /api/v1/health response."""

    status: str = Field(..., description="Overall status: ok / degraded")
    version: str = Field(..., description="Beruang version")
    uptime_seconds: float = Field(..., description="Server uptime in seconds")
    components: List[ComponentHealth] = Field(default_factory=list)
    timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
