"""Chat endpoints for the Beruang REST API.

POST /api/v1/chat/stream — Server-Sent Events stream (thinking, token,
                           heartbeat, done, error)
POST /api/v1/chat        — Non-streaming fallback
GET  /api/v1/route       — Routing decision only, no reply generated
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator, Optional, Union

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, Response
from sse_starlette.sse import EventSourceResponse

from beruang.api.models import ChatRequest, ChatResponse, ErrorResponse, RouteResponse
from beruang.errors import UpstreamFailure
from beruang.search.places import is_place_query
from beruang.stream.orchestrator import ChatOrchestrator, ChatTurn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["chat"])


def _empty_message() -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(error="Message cannot be empty", code="empty_message").model_dump(),
    )


def _to_turn(body: ChatRequest) -> ChatTurn:
    return ChatTurn(
        message=body.message,
        history=tuple(item.to_message() for item in body.history),
        user_profile=body.user_profile,
        budget_context=body.budget_context or "",
    )


def _orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.beruang_server.orchestrator


@router.post(
    "/chat/stream",
    summary="Stream a chat reply",
    description="Routes the message and streams the reply as Server-Sent Events.",
    response_description="text/event-stream",
    response_class=Response,
    responses={400: {"model": ErrorResponse}},
)
async def chat_stream(body: ChatRequest, request: Request):
    """Stream the reply as SSE events."""
    if not body.message.strip():
        return _empty_message()

    orchestrator = _orchestrator(request)
    turn = _to_turn(body)

    async def _event_generator() -> AsyncGenerator[dict, None]:
        events = orchestrator.stream(turn, is_disconnected=request.is_disconnected)
        try:
            async for event in events:
                yield event.to_sse()
        except asyncio.CancelledError:
            logger.info("[Stream] client went away")
            raise
        finally:
            await events.aclose()

    return EventSourceResponse(_event_generator())


@router.post(
    "/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}, 502: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="Send a chat message",
    description="Non-streaming fallback: returns the final reply and which side produced it.",
)
async def chat(body: ChatRequest, request: Request) -> Union[ChatResponse, JSONResponse]:
    """Single reply (local canned reply or remote completion)."""
    if not body.message.strip():
        return _empty_message()

    try:
        result = await _orchestrator(request).respond(_to_turn(body))
    except UpstreamFailure as e:
        logger.error("[Chat] remote model failed: %s", e)
        return JSONResponse(
            status_code=502,
            content=ErrorResponse(error="Chat processing failed", code="upstream_error").model_dump(),
        )

    decision = result.decision
    return ChatResponse(
        ok=True,
        response=result.text,
        source=result.source.value,
        intent=decision.intent,
        reason=decision.reason or None,
        response_time_ms=result.response_time_ms,
    )


@router.get(
    "/route",
    response_model=RouteResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Explain routing",
    description="Returns the routing decision and OOD verdict for a message without replying.",
)
async def route(
    request: Request,
    message: str = Query(..., min_length=1, max_length=4096),
) -> Union[RouteResponse, JSONResponse]:
    """Debug view of the routing decision."""
    if not message.strip():
        return _empty_message()
    engine = _orchestrator(request).engine
    decision = await asyncio.to_thread(engine.decide, message)
    return RouteResponse(
        message=message,
        decision=decision.to_dict(),
        place_query=is_place_query(message),
    )
