# SPDX-License-Identifier: MIT
"""
NLU type definitions.

Data structures shared by the classifier, the OOD detector and the router:
- LabelConfig: classifier output index → intent name, plus thresholds
- Prediction: probability distribution over the label set
- OODVerdict: trustworthiness assessment of a Prediction
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence

from beruang.errors import ConfigurationError
from beruang.text.normalize import TokenSequence

UNKNOWN_INTENT = "UNKNOWN"


# ============================================================================
# Label configuration
# ============================================================================


@dataclass(frozen=True)
class LabelConfig:
    """Intent label set with per-intent confidence thresholds.

    Attributes:
        labels: Intent names indexed by classifier output position.
        thresholds: Per-intent confidence overrides.
        global_threshold: Threshold for intents without an override.
    """

    labels: tuple[str, ...]
    thresholds: Mapping[str, float] = field(default_factory=dict)
    global_threshold: float = 0.70

    def __post_init__(self) -> None:
        if not self.labels:
            raise ConfigurationError("label set is empty")
        object.__setattr__(self, "thresholds", MappingProxyType(dict(self.thresholds)))

    def __len__(self) -> int:
        return len(self.labels)

    def label_for(self, index: int) -> str:
        """Intent name for an output index."""
        if 0 <= index < len(self.labels):
            return self.labels[index]
        return UNKNOWN_INTENT

    def threshold_for(self, intent: str) -> float:
        """Per-intent override if present, else the global threshold."""
        return self.thresholds.get(intent, self.global_threshold)

    @classmethod
    def from_metadata(
        cls,
        metadata: Mapping[str, Any],
        *,
        default_threshold: float = 0.70,
    ) -> "LabelConfig":
        """Build from ``metadata.json``.

        Accepts ``labelMap`` (or legacy ``intentIndex``) as ``{"0": "GREETING"}``,
        optional ``confidenceThresholds`` and ``globalThreshold``.
        """
        label_map = metadata.get("labelMap") or metadata.get("intentIndex")
        if not isinstance(label_map, Mapping) or not label_map:
            raise ConfigurationError("metadata.labelMap missing or empty")

        try:
            by_index = {int(k): str(v) for k, v in label_map.items()}
            thresholds = {
                str(k): float(v)
                for k, v in (metadata.get("confidenceThresholds") or {}).items()
            }
            global_threshold = float(metadata.get("globalThreshold") or default_threshold)
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationError(f"malformed label metadata: {e}") from e

        expected = set(range(len(by_index)))
        if set(by_index) != expected:
            raise ConfigurationError(
                f"labelMap indices must be contiguous from 0, got {sorted(by_index)}"
            )

        labels = tuple(by_index[i] for i in range(len(by_index)))
        return cls(labels=labels, thresholds=thresholds, global_threshold=global_threshold)


# ============================================================================
# Prediction
# ============================================================================


@dataclass(frozen=True)
class Prediction:
    """Probability distribution produced by the classifier for one message.

    Attributes:
        probabilities: One probability per label, summing to ~1.
        sequence: Token sequence the prediction came from, when the
            embedder is sequence-based (None for sentence embeddings).
    """

    probabilities: tuple[float, ...]
    sequence: Optional[TokenSequence] = None

    def __post_init__(self) -> None:
        if not self.probabilities:
            raise ValueError("prediction has no probabilities")

    @classmethod
    def from_scores(
        cls, scores: Sequence[float], sequence: Optional[TokenSequence] = None
    ) -> "Prediction":
        return cls(probabilities=tuple(float(p) for p in scores), sequence=sequence)

    @property
    def top_index(self) -> int:
        probs = self.probabilities
        return max(range(len(probs)), key=probs.__getitem__)

    @property
    def top_probability(self) -> float:
        return self.probabilities[self.top_index]

    def ranked(self) -> list[float]:
        """Probabilities sorted descending."""
        return sorted(self.probabilities, reverse=True)


# ============================================================================
# OOD verdict
# ============================================================================


@dataclass(frozen=True)
class OODVerdict:
    """Outcome of the out-of-distribution checks.

    ``reasons`` explains every OOD verdict. The no-signal case short-circuits
    with exactly one reason and zero confidence.
    """

    is_ood: bool
    reasons: tuple[str, ...] = ()
    confidence: float = 0.0
    entropy: float = 0.0
    margin: float = 0.0
    predicted_intent: str = UNKNOWN_INTENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_ood": self.is_ood,
            "reasons": list(self.reasons),
            "confidence": round(self.confidence, 4),
            "entropy": round(self.entropy, 4),
            "margin": round(self.margin, 4),
            "predicted_intent": self.predicted_intent,
        }
