"""Chat orchestrator: gather context, route, deliver.

Per-request state machine::

    Received → Thinking → Gathering (concurrent) → Routed → LocalEmit  → Done
                                                          └ RemoteRelay → Done
                 any step after Thinking ──────────────────────────────► Error

Gathering runs three independent tasks and keeps each outcome separately:

- intent routing (pre-filter + classifier + OOD gate, in a worker thread)
- place lookup, only when the message looks like a place query
- expert-tip lookup

A failing task contributes nothing; it never fails the request. Only a
failure during delivery reaches the client, as a terminal ``error`` event.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

from beruang.errors import StreamInterrupted
from beruang.knowledge.store import KnowledgeStore, Tip
from beruang.llm.base import LLMClientProtocol, LLMMessage
from beruang.llm.prompts import PromptContext, build_messages
from beruang.routing.engine import (
    RouteSource,
    RoutingDecision,
    RoutingEngine,
    apply_context_override,
)
from beruang.search.places import PlaceResults, PlaceSearch, is_place_query, with_halal_filter
from beruang.stream.events import THINKING_MESSAGE, StreamEvent

logger = logging.getLogger(__name__)

REASON_ROUTING_FAILED = "routing failed"

DisconnectCheck = Callable[[], Awaitable[bool]]


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class StreamConfig:
    """Delivery settings.

    Attributes:
        token_delay_s: Pause after each word of a local reply.
        heartbeat_interval_s: Heartbeat period during remote relay.
        partial_min_chars: A broken remote stream that already delivered
            more than this many characters ends with ``done`` (partial).
        history_window: Conversation turns forwarded to the remote model.
        thinking_message: Text of the initial ``thinking`` event.
    """

    token_delay_s: float = 0.03
    heartbeat_interval_s: float = 15.0
    partial_min_chars: int = 20
    history_window: int = 8
    thinking_message: str = THINKING_MESSAGE


# =============================================================================
# Request / result types
# =============================================================================

@dataclass(frozen=True)
class ChatTurn:
    """One user message with its conversation context."""

    message: str
    history: tuple[LLMMessage, ...] = ()
    user_profile: Optional[Mapping[str, Any]] = None
    budget_context: str = ""


@dataclass(frozen=True)
class TaskOutcome:
    """Success or failure of one gathering task."""

    name: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class GatheredContext:
    """Everything the gathering step produced.

    Attributes:
        decision: Final routing decision (context override applied).
        place_query: The message looked like a place query.
        place_results: Search results, if the lookup found any.
        tips: Relevant expert tips.
        outcomes: Per-task outcomes, in launch order.
    """

    decision: RoutingDecision
    place_query: bool = False
    place_results: Optional[PlaceResults] = None
    tips: tuple[Tip, ...] = ()
    outcomes: tuple[TaskOutcome, ...] = field(default_factory=tuple)

    @property
    def grounded(self) -> bool:
        """Answer should stick to search results (lower temperature)."""
        return self.place_query or self.place_results is not None


@dataclass(frozen=True)
class ChatResult:
    """Non-streaming reply."""

    text: str
    source: RouteSource
    decision: RoutingDecision
    response_time_ms: int


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# =============================================================================
# Orchestrator
# =============================================================================

class ChatOrchestrator:
    """Turns a ChatTurn into stream events (or a single reply).

    Stateless across requests; every collaborator is read-only after
    startup.

    Args:
        engine: Routing engine.
        knowledge: Canned replies, tips and regional statistics.
        llm: Remote chat model.
        places: Place lookup, or None to disable it.
        config: Delivery settings.
    """

    def __init__(
        self,
        engine: RoutingEngine,
        knowledge: KnowledgeStore,
        llm: LLMClientProtocol,
        places: Optional[PlaceSearch] = None,
        config: Optional[StreamConfig] = None,
    ) -> None:
        self.engine = engine
        self.knowledge = knowledge
        self.llm = llm
        self.places = places
        self.config = config or StreamConfig()

    # -------------------------------------------------------------------------
    # Gathering
    # -------------------------------------------------------------------------

    async def _route(self, message: str) -> RoutingDecision:
        return await asyncio.to_thread(self.engine.decide, message)

    async def _search_places(self, message: str, place_query: bool) -> Optional[PlaceResults]:
        if not place_query or self.places is None:
            return None
        return await asyncio.to_thread(self.places.search, with_halal_filter(message))

    async def _find_tips(self, message: str) -> tuple[Tip, ...]:
        return tuple(self.knowledge.relevant_tips(message))

    async def gather(self, turn: ChatTurn) -> GatheredContext:
        """Run the gathering tasks concurrently and settle the route."""
        message = turn.message
        place_query = is_place_query(message)

        names = ("routing", "places", "tips")
        results = await asyncio.gather(
            self._route(message),
            self._search_places(message, place_query),
            self._find_tips(message),
            return_exceptions=True,
        )

        outcomes = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                logger.warning("[Stream] %s task failed: %s", name, result)
                outcomes.append(TaskOutcome(name, error=result))
            else:
                outcomes.append(TaskOutcome(name, value=result))
        routed, places, tips = outcomes

        base = routed.value if routed.ok else RoutingDecision.remote(REASON_ROUTING_FAILED)
        place_results = places.value if places.ok else None
        decision = apply_context_override(
            base,
            message,
            turn.history,
            has_external_results=place_results is not None,
            config=self.engine.config,
        )

        return GatheredContext(
            decision=decision,
            place_query=place_query,
            place_results=place_results,
            tips=tips.value if tips.ok else (),
            outcomes=tuple(outcomes),
        )

    def build_messages(self, turn: ChatTurn, context: GatheredContext) -> list[LLMMessage]:
        """Remote prompt for this turn."""
        profile = turn.user_profile or {}
        prefilter = context.decision.prefilter
        prompt_context = PromptContext(
            user_profile=turn.user_profile,
            budget_context=turn.budget_context,
            regional_stats=self.knowledge.regional_stats(profile.get("state")),
            tips=tuple(tip.render() for tip in context.tips),
            app_manual=self.knowledge.app_manual if prefilter is not None and prefilter.app_help else "",
            web_results=context.place_results.text if context.place_results else "",
        )
        return build_messages(
            turn.message,
            turn.history,
            prompt_context,
            history_window=self.config.history_window,
        )

    def _local_reply(self, decision: RoutingDecision) -> Optional[str]:
        if not decision.is_local:
            return None
        return self.knowledge.get_reply(decision.intent)

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def stream(
        self,
        turn: ChatTurn,
        *,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> AsyncIterator[StreamEvent]:
        """Yield the full event sequence for one turn.

        Args:
            turn: The user's message and context.
            is_disconnected: Async callable polled between events; when it
                returns True delivery stops without a terminal event.
        """
        started = time.perf_counter()
        yield StreamEvent.thinking(self.config.thinking_message)

        try:
            context = await self.gather(turn)
        except Exception:
            logger.exception("[Stream] gathering failed")
            yield StreamEvent.error()
            return

        decision = context.decision
        reply = self._local_reply(decision)

        if reply is not None:
            logger.info("[Stream] serving local reply: %s", decision.intent)
            async for event in self._emit_local(reply, decision, started, is_disconnected):
                yield event
            return

        logger.info("[Stream] streaming from remote model (%s)", decision.reason or "no local reply")
        async for event in self._relay(turn, context, started, is_disconnected):
            yield event

    async def _emit_local(
        self,
        reply: str,
        decision: RoutingDecision,
        started: float,
        is_disconnected: Optional[DisconnectCheck],
    ) -> AsyncIterator[StreamEvent]:
        for word in reply.split():
            if await _check(is_disconnected):
                logger.info("[Stream] client disconnected during local reply")
                return
            yield StreamEvent.token(word + " ")
            await asyncio.sleep(self.config.token_delay_s)

        yield StreamEvent.done(
            RouteSource.LOCAL.value, _elapsed_ms(started), intent=decision.intent
        )

    async def _relay(
        self,
        turn: ChatTurn,
        context: GatheredContext,
        started: float,
        is_disconnected: Optional[DisconnectCheck],
    ) -> AsyncIterator[StreamEvent]:
        """Relay the remote stream, interleaving heartbeats.

        A pump task moves fragments into a queue; this generator waits on
        the queue until the next heartbeat deadline. Heartbeats never
        reorder tokens because tokens only leave the queue in order. A pump
        that dies without queuing a terminal item ends the stream with an
        error event.
        """
        try:
            messages = self.build_messages(turn, context)
        except Exception:
            logger.exception("[Stream] prompt assembly failed")
            yield StreamEvent.error()
            return

        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()

        async def pump() -> None:
            fragments = None
            try:
                fragments = self.llm.stream(messages, grounded=context.grounded)
                async for fragment in fragments:
                    await queue.put(("token", fragment))
                await queue.put(("end", None))
            except Exception as e:
                await queue.put(("error", e))
            finally:
                aclose = getattr(fragments, "aclose", None)
                if aclose is not None:
                    try:
                        await aclose()
                    except Exception:
                        logger.warning("[Stream] closing remote stream failed", exc_info=True)

        loop = asyncio.get_running_loop()
        interval = self.config.heartbeat_interval_s
        next_beat = loop.time() + interval
        delivered = 0
        pump_task = asyncio.create_task(pump())
        getter: Optional[asyncio.Task] = None

        try:
            while True:
                if await _check(is_disconnected):
                    logger.info("[Stream] client disconnected after %d chars", delivered)
                    return

                if getter is None:
                    getter = asyncio.ensure_future(queue.get())
                timeout = max(0.0, next_beat - loop.time())
                done, _ = await asyncio.wait(
                    {getter, pump_task}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
                )

                if getter in done:
                    kind, payload = getter.result()
                    getter = None
                elif not queue.empty():
                    # Item queued before the getter resumed.
                    getter.cancel()
                    getter = None
                    kind, payload = queue.get_nowait()
                elif pump_task in done:
                    error = None if pump_task.cancelled() else pump_task.exception()
                    logger.error("[Stream] remote pump stopped without a terminal item", exc_info=error)
                    yield StreamEvent.error()
                    return
                else:
                    next_beat = loop.time() + interval
                    yield StreamEvent.heartbeat()
                    continue

                if kind == "token":
                    delivered += len(payload)
                    yield StreamEvent.token(payload)
                elif kind == "end":
                    yield StreamEvent.done(RouteSource.REMOTE.value, _elapsed_ms(started))
                    return
                else:
                    error = payload
                    if isinstance(error, StreamInterrupted) and delivered > self.config.partial_min_chars:
                        logger.warning(
                            "[Stream] remote stream ended early after %d chars: %s", delivered, error
                        )
                        yield StreamEvent.done(
                            RouteSource.REMOTE.value, _elapsed_ms(started), partial=True
                        )
                    else:
                        logger.error("[Stream] remote delivery failed: %s", error, exc_info=error)
                        yield StreamEvent.error()
                    return
        finally:
            if getter is not None:
                getter.cancel()
            if not pump_task.done():
                pump_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump_task

    # -------------------------------------------------------------------------
    # Non-streaming fallback
    # -------------------------------------------------------------------------

    async def respond(self, turn: ChatTurn) -> ChatResult:
        """Single reply for clients that cannot consume a stream.

        Raises:
            UpstreamFailure: The remote model failed.
        """
        started = time.perf_counter()
        context = await self.gather(turn)
        decision = context.decision

        reply = self._local_reply(decision)
        if reply is not None:
            return ChatResult(reply, RouteSource.LOCAL, decision, _elapsed_ms(started))

        messages = self.build_messages(turn, context)
        text = await self.llm.chat(messages, grounded=context.grounded)
        return ChatResult(text, RouteSource.REMOTE, decision, _elapsed_ms(started))


async def _check(is_disconnected: Optional[DisconnectCheck]) -> bool:
    if is_disconnected is None:
        return False
    return bool(await is_disconnected())
