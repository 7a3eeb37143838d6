# SPDX-License-Identifier: MIT
"""
Out-of-distribution (OOD) detection for local intent predictions.

A narrow classifier always returns *some* intent. Before a canned reply is
served, the prediction has to survive five independent checks:

1. No-signal: every token is padding/unknown → OOD, short-circuit
2. Unknown ratio: too many unknown tokens
3. Length: long messages tend to be compound, multi-intent requests
4. Confidence: top-1 probability below the (per-intent) threshold
5. Entropy: normalized Shannon entropy too high
6. Margin: top-1 and top-2 too close together

Decision rule:
    is_ood = len(reasons) >= decision_threshold  OR  top1 < threshold

With the default ``decision_threshold`` of 1 any triggered check gates.
Raising it to 2 lets a single weak signal through while low confidence
still gates on its own.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from beruang.nlu.types import UNKNOWN_INTENT, LabelConfig, OODVerdict, Prediction
from beruang.text.normalize import PAD_INDEX, UNKNOWN_INDEX

NO_SIGNAL_REASON = "no recognized words"


@dataclass(frozen=True)
class OODConfig:
    """Thresholds for the OOD checks.

    Attributes:
        unknown_ratio_max: Flag when unknown/(non-padding) exceeds this.
        max_words: Flag messages with more words than this.
        entropy_max: Flag when normalized entropy exceeds this.
        margin_min: Flag when top1 - top2 is below this.
        default_threshold: Confidence threshold used when the label
            metadata carries no global threshold.
        decision_threshold: Number of reasons that makes a verdict OOD.
    """

    unknown_ratio_max: float = 0.6
    max_words: int = 20
    entropy_max: float = 0.6
    margin_min: float = 0.10
    default_threshold: float = 0.70
    decision_threshold: int = 1


def normalized_entropy(probabilities: Sequence[float]) -> float:
    """Shannon entropy divided by log(n), in [0, 1]."""
    n = len(probabilities)
    if n < 2:
        return 0.0
    entropy = -sum(p * math.log(p) for p in probabilities if p > 0)
    return entropy / math.log(n)


def top_margin(probabilities: Sequence[float]) -> float:
    """Gap between the two highest probabilities."""
    ranked = sorted(probabilities, reverse=True)
    second = ranked[1] if len(ranked) > 1 else 0.0
    return ranked[0] - second


def detect_ood(
    message: str,
    sequence: Optional[Sequence[int]],
    prediction: Prediction,
    labels: LabelConfig,
    config: OODConfig = OODConfig(),
) -> OODVerdict:
    """Assess whether a local prediction can be trusted.

    Args:
        message: Original user message.
        sequence: Token sequence the prediction came from, or None when
            the classifier works on sentence embeddings.
        prediction: Classifier output.
        labels: Label set with thresholds.
        config: Check thresholds.

    Returns:
        OODVerdict with every triggered reason in check order.
    """
    reasons: list[str] = []

    if sequence is not None:
        known = sum(1 for t in sequence if t > UNKNOWN_INDEX)
        if known == 0:
            return OODVerdict(
                is_ood=True,
                reasons=(NO_SIGNAL_REASON,),
                confidence=0.0,
                predicted_intent=UNKNOWN_INTENT,
            )

        non_padding = sum(1 for t in sequence if t != PAD_INDEX)
        unknown = sum(1 for t in sequence if t == UNKNOWN_INDEX)
        unknown_ratio = unknown / non_padding
        if unknown_ratio > config.unknown_ratio_max:
            reasons.append(f"{unknown_ratio:.0%} unknown words")

    word_count = len(message.lower().split())
    if word_count > config.max_words:
        reasons.append(f"query too long/complex ({word_count} words)")

    probabilities = prediction.probabilities
    top_index = prediction.top_index
    confidence = probabilities[top_index]
    predicted_intent = labels.label_for(top_index)
    threshold = labels.threshold_for(predicted_intent)

    if confidence < threshold:
        reasons.append(f"confidence {confidence:.1%} < threshold {threshold:.1%}")

    entropy = normalized_entropy(probabilities)
    if entropy > config.entropy_max:
        reasons.append(f"high uncertainty (entropy {entropy:.2f})")

    margin = top_margin(probabilities)
    if margin < config.margin_min:
        reasons.append(f"low confidence gap ({margin:.1%})")

    is_ood = len(reasons) >= config.decision_threshold or confidence < threshold

    return OODVerdict(
        is_ood=is_ood,
        reasons=tuple(reasons),
        confidence=confidence,
        entropy=entropy,
        margin=margin,
        predicted_intent=predicted_intent,
    )
