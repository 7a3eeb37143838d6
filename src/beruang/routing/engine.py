"""Routing decision engine: local canned reply or remote LLM.

Pipeline for one message:

    pre-filter ──fired──────────────────────────────► Remote
        │
    classify ──ModelUnavailable / NoSignal─────────► Remote
        │
    OOD gate ──OOD──────────────────────────────────► Remote
        │
    sentinel intent / no canned reply ─────────────► Remote
        │
        └──────────────────────────────────────────► Local(intent)

A caller-side context override may then demote ``Local`` to ``Remote``
(short follow-ups, place lookups that already produced results). The
engine itself holds only read-only collaborators and is shared by all
requests.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Protocol, Sequence

from beruang.errors import ModelUnavailable, NoSignal
from beruang.nlu.classifier import IntentClassifier
from beruang.nlu.ood import OODConfig, detect_ood
from beruang.nlu.types import UNKNOWN_INTENT, OODVerdict
from beruang.routing.preroute import PREFILTER_REASON, PreFilter, PreFilterMatch

logger = logging.getLogger(__name__)

COMPLEX_ADVICE_INTENT = "COMPLEX_ADVICE"
GARBAGE_INTENT = "GARBAGE"

REASON_MODEL_UNAVAILABLE = "model unavailable"
REASON_NO_SIGNAL = "no signal"
REASON_SENTINEL = "reserved intent"
REASON_NO_REPLY = "no canned reply"
REASON_SHORT_FOLLOWUP = "short follow-up"
REASON_EXTERNAL_RESULTS = "external results available"


# =============================================================================
# Configuration
# =============================================================================

@dataclass(frozen=True)
class RoutingConfig:
    """Routing policy.

    Attributes:
        sentinel_intents: Intents that never get a canned reply.
        high_confidence: Local confidence that survives the short
            follow-up override.
        short_followup_chars: Messages shorter than this (with history)
            count as follow-ups.
    """

    sentinel_intents: frozenset[str] = field(
        default_factory=lambda: frozenset({COMPLEX_ADVICE_INTENT, GARBAGE_INTENT})
    )
    high_confidence: float = 0.80
    short_followup_chars: int = 20


class ReplyLookup(Protocol):
    """The part of the canned-reply store the engine needs."""

    def has_reply(self, intent: str) -> bool:
        ...


# =============================================================================
# Decision
# =============================================================================

class RouteSource(str, Enum):
    """Who answers the message."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class RoutingDecision:
    """Local(intent) or Remote(reason), plus the evidence behind it.

    Attributes:
        source: LOCAL or REMOTE.
        intent: Predicted intent (UNKNOWN_INTENT when none was produced).
        reason: Why the message goes remote; empty for local.
        confidence: Top-1 probability, 1.0 for a fired pre-filter.
        verdict: OOD verdict, when the classifier ran.
        prefilter: Pre-filter outcome.
        classifier_invoked: Whether the classifier was called.
    """

    source: RouteSource
    intent: str = UNKNOWN_INTENT
    reason: str = ""
    confidence: float = 0.0
    verdict: Optional[OODVerdict] = None
    prefilter: Optional[PreFilterMatch] = None
    classifier_invoked: bool = False

    @classmethod
    def local(cls, intent: str, confidence: float, **kwargs: Any) -> "RoutingDecision":
        return cls(source=RouteSource.LOCAL, intent=intent, confidence=confidence, **kwargs)

    @classmethod
    def remote(cls, reason: str, **kwargs: Any) -> "RoutingDecision":
        return cls(source=RouteSource.REMOTE, reason=reason, **kwargs)

    @property
    def is_local(self) -> bool:
        return self.source is RouteSource.LOCAL

    def to_remote(self, reason: str) -> "RoutingDecision":
        """Same evidence, remote route."""
        return replace(self, source=RouteSource.REMOTE, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source.value,
            "intent": self.intent,
            "reason": self.reason,
            "confidence": round(self.confidence, 4),
            "classifier_invoked": self.classifier_invoked,
            "prefilter_fired": bool(self.prefilter and self.prefilter.fired),
            "ood": self.verdict.to_dict() if self.verdict else None,
        }


# =============================================================================
# Engine
# =============================================================================

class RoutingEngine:
    """Combines pre-filter, classifier and OOD verdict into a decision.

    Args:
        classifier: Local intent classifier, or None when disabled.
        replies: Canned-reply lookup.
        prefilter: Keyword pre-filter.
        ood_config: OOD check thresholds.
        config: Routing policy.
    """

    def __init__(
        self,
        classifier: Optional[IntentClassifier],
        replies: ReplyLookup,
        *,
        prefilter: Optional[PreFilter] = None,
        ood_config: Optional[OODConfig] = None,
        config: Optional[RoutingConfig] = None,
    ) -> None:
        self.classifier = classifier
        self.replies = replies
        self.prefilter = prefilter or PreFilter()
        self.ood_config = ood_config or OODConfig()
        self.config = config or RoutingConfig()

    @property
    def classifier_ready(self) -> bool:
        return self.classifier is not None and self.classifier.is_ready

    def route(self, message: str, history: Sequence[Any] = ()) -> RoutingDecision:
        """Base decision plus the history-dependent override."""
        decision = self.decide(message)
        return apply_context_override(decision, message, history, config=self.config)

    def decide(self, message: str) -> RoutingDecision:
        """Base decision, independent of conversation context.

        Blocking (runs the classifier); call it from a worker thread in
        async code.
        """
        pre = self.prefilter.check(message)
        if pre.fired:
            decision = RoutingDecision.remote(
                PREFILTER_REASON,
                intent=COMPLEX_ADVICE_INTENT,
                confidence=pre.confidence,
                prefilter=pre,
            )
            self._log(message, decision)
            return decision

        classifier = self.classifier
        if classifier is None:
            decision = RoutingDecision.remote(REASON_MODEL_UNAVAILABLE, prefilter=pre)
            self._log(message, decision)
            return decision

        try:
            prediction = classifier.classify(message)
        except ModelUnavailable as e:
            logger.debug("[Intent] classifier unavailable: %s", e)
            decision = RoutingDecision.remote(
                REASON_MODEL_UNAVAILABLE, prefilter=pre, classifier_invoked=True
            )
            self._log(message, decision)
            return decision
        except NoSignal:
            decision = RoutingDecision.remote(
                REASON_NO_SIGNAL, prefilter=pre, classifier_invoked=True
            )
            self._log(message, decision)
            return decision

        verdict = detect_ood(
            message, prediction.sequence, prediction, classifier.labels, self.ood_config
        )
        evidence = dict(
            intent=verdict.predicted_intent,
            confidence=verdict.confidence,
            verdict=verdict,
            prefilter=pre,
            classifier_invoked=True,
        )

        if verdict.is_ood:
            decision = RoutingDecision.remote("out of distribution: " + "; ".join(verdict.reasons), **evidence)
        elif verdict.predicted_intent in self.config.sentinel_intents:
            decision = RoutingDecision.remote(REASON_SENTINEL, **evidence)
        elif not self.replies.has_reply(verdict.predicted_intent):
            decision = RoutingDecision.remote(REASON_NO_REPLY, **evidence)
        else:
            decision = RoutingDecision(source=RouteSource.LOCAL, **evidence)

        self._log(message, decision)
        return decision

    def _log(self, message: str, decision: RoutingDecision) -> None:
        outcome = "local reply" if decision.is_local else decision.reason
        logger.info(
            "[Intent] %r -> %s (%.1f%%) -> %s",
            message[:60], decision.intent, decision.confidence * 100, outcome,
        )


def is_short_followup(message: str, history: Sequence[Any], config: RoutingConfig) -> bool:
    """Short message continuing an existing conversation."""
    return len(message.strip()) < config.short_followup_chars and len(history) > 0


def apply_context_override(
    decision: RoutingDecision,
    message: str,
    history: Sequence[Any],
    *,
    has_external_results: bool = False,
    config: Optional[RoutingConfig] = None,
) -> RoutingDecision:
    """Demote a Local decision when conversation context says otherwise.

    - External (place) results were found → they take priority
    - Short follow-up without a high-confidence local match → remote
    """
    if not decision.is_local:
        return decision
    config = config or RoutingConfig()

    if has_external_results:
        return decision.to_remote(REASON_EXTERNAL_RESULTS)
    if is_short_followup(message, history, config) and decision.confidence < config.high_confidence:
        logger.info("[Intent] short follow-up at %.1f%% → remote", decision.confidence * 100)
        return decision.to_remote(REASON_SHORT_FOLLOWUP)
    return decision
