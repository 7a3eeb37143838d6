# SPDX-License-Identifier: MIT
"""Tests for the out-of-distribution detector.

Tests cover:
  - No-signal short-circuit
  - Each individual check (unknown ratio, length, confidence, entropy, margin)
  - Decision rule and its configurable threshold
  - Monotonicity of reasons as confidence drops
  - Label metadata parsing
"""
from __future__ import annotations

import math

import pytest

from beruang.errors import ConfigurationError
from beruang.nlu.ood import NO_SIGNAL_REASON, OODConfig, detect_ood, normalized_entropy, top_margin
from beruang.nlu.types import UNKNOWN_INTENT, LabelConfig, Prediction

LABELS = LabelConfig(labels=("GREETING", "LOG_EXPENSE", "BUDGET_CHECK"), global_threshold=0.70)

# Left-padded sequence with two known words
CLEAN_SEQUENCE = (0,) * 18 + (2, 3)


def _verdict(probs, *, message="hello there", sequence=CLEAN_SEQUENCE, labels=LABELS, config=None):
    return detect_ood(message, sequence, Prediction.from_scores(probs), labels, config or OODConfig())


class TestNoSignal:

    def test_all_padding_and_unknown_is_ood_with_zero_confidence(self):
        """A sequence of only 0/1 short-circuits with one reason."""
        verdict = _verdict((0.99, 0.005, 0.005), sequence=(0,) * 17 + (1, 1, 1))
        assert verdict.is_ood
        assert verdict.reasons == (NO_SIGNAL_REASON,)
        assert verdict.confidence == 0.0
        assert verdict.predicted_intent == UNKNOWN_INTENT

    def test_all_padding(self):
        verdict = _verdict((0.99, 0.005, 0.005), sequence=(0,) * 20)
        assert verdict.is_ood
        assert verdict.confidence == 0.0


class TestChecks:

    def test_clean_confident_prediction_passes(self):
        """High confidence, clear margin, known words → in distribution."""
        verdict = _verdict((0.95, 0.03, 0.02))
        assert not verdict.is_ood
        assert verdict.reasons == ()
        assert verdict.predicted_intent == "GREETING"
        assert verdict.confidence == pytest.approx(0.95)

    def test_unknown_ratio(self):
        """More than 60% unknown words is flagged."""
        sequence = (0,) * 15 + (1, 1, 1, 1, 2)
        verdict = _verdict((0.95, 0.03, 0.02), sequence=sequence)
        assert verdict.is_ood
        assert verdict.reasons == ("80% unknown words",)

    def test_unknown_ratio_at_limit_not_flagged(self):
        """Exactly 60% unknown is allowed."""
        sequence = (0,) * 15 + (1, 1, 1, 2, 3)
        verdict = _verdict((0.95, 0.03, 0.02), sequence=sequence)
        assert verdict.reasons == ()

    def test_long_message(self):
        """More than 20 words reads as a compound request."""
        message = " ".join(["word"] * 21)
        verdict = _verdict((0.95, 0.03, 0.02), message=message)
        assert verdict.reasons == ("query too long/complex (21 words)",)

    def test_low_confidence(self):
        verdict = _verdict((0.65, 0.30, 0.05))
        assert verdict.is_ood
        assert verdict.reasons[0] == "confidence 65.0% < threshold 70.0%"

    def test_per_intent_threshold_override(self):
        """A stricter per-intent threshold gates an otherwise fine prediction."""
        labels = LabelConfig(
            labels=("GREETING", "LOG_EXPENSE", "BUDGET_CHECK"),
            thresholds={"GREETING": 0.97},
        )
        verdict = _verdict((0.95, 0.03, 0.02), labels=labels)
        assert verdict.is_ood
        assert "threshold 97.0%" in verdict.reasons[0]

    def test_high_entropy(self):
        verdict = _verdict((0.40, 0.35, 0.25))
        assert any(r.startswith("high uncertainty (entropy") for r in verdict.reasons)

    def test_close_margin_alone_gates(self):
        """0.95 vs 0.93 on clean input is flagged by the margin check alone."""
        labels = LabelConfig(labels=("GREETING", "LOG_EXPENSE"))
        verdict = _verdict((0.95, 0.93), labels=labels)
        assert verdict.is_ood
        assert verdict.reasons == ("low confidence gap (2.0%)",)
        assert verdict.margin == pytest.approx(0.02)

    def test_sentence_embeddings_skip_sequence_checks(self):
        """Without a token sequence only the distribution checks run."""
        verdict = _verdict((0.95, 0.03, 0.02), sequence=None)
        assert not verdict.is_ood


class TestDecisionRule:

    def test_two_reasons_needed_when_configured(self):
        """decision_threshold=2 lets one weak signal through."""
        labels = LabelConfig(labels=("GREETING", "LOG_EXPENSE"))
        verdict = _verdict((0.95, 0.93), labels=labels, config=OODConfig(decision_threshold=2))
        assert not verdict.is_ood
        assert verdict.reasons == ("low confidence gap (2.0%)",)

    def test_low_confidence_gates_regardless_of_threshold(self):
        verdict = _verdict((0.60, 0.39, 0.01), config=OODConfig(decision_threshold=5))
        assert verdict.is_ood

    def test_ood_verdict_always_has_reasons(self):
        for probs in [(0.34, 0.33, 0.33), (0.5, 0.45, 0.05), (0.69, 0.3, 0.01)]:
            verdict = _verdict(probs)
            assert verdict.is_ood
            assert verdict.reasons

    def test_reasons_monotonic_as_confidence_drops(self):
        """Lower confidence never removes a reason."""
        counts = []
        for top in (0.98, 0.9, 0.8, 0.7, 0.6, 0.5, 0.4, 0.34):
            rest = (1.0 - top) / 2
            counts.append(len(_verdict((top, rest, rest)).reasons))
        assert counts == sorted(counts)

    def test_deterministic(self):
        assert _verdict((0.5, 0.3, 0.2)) == _verdict((0.5, 0.3, 0.2))

    def test_to_dict(self):
        data = _verdict((0.95, 0.03, 0.02)).to_dict()
        assert data["is_ood"] is False
        assert data["predicted_intent"] == "GREETING"
        assert data["reasons"] == []


class TestStatistics:

    def test_entropy_bounds(self):
        assert normalized_entropy((1.0, 0.0, 0.0)) == 0.0
        assert normalized_entropy((0.25,) * 4) == pytest.approx(1.0)

    def test_entropy_single_class(self):
        assert normalized_entropy((1.0,)) == 0.0

    def test_entropy_value(self):
        expected = -(0.5 * math.log(0.5) * 2) / math.log(2)
        assert normalized_entropy((0.5, 0.5)) == pytest.approx(expected)

    def test_margin(self):
        assert top_margin((0.2, 0.7, 0.1)) == pytest.approx(0.5)
        assert top_margin((0.9,)) == pytest.approx(0.9)


class TestLabelConfig:

    def test_from_metadata(self):
        labels = LabelConfig.from_metadata(
            {
                "labelMap": {"0": "GREETING", "1": "LOG_EXPENSE"},
                "confidenceThresholds": {"LOG_EXPENSE": 0.8},
                "globalThreshold": 0.6,
            }
        )
        assert labels.labels == ("GREETING", "LOG_EXPENSE")
        assert labels.threshold_for("LOG_EXPENSE") == 0.8
        assert labels.threshold_for("GREETING") == 0.6

    def test_legacy_intent_index(self):
        labels = LabelConfig.from_metadata({"intentIndex": {"0": "A", "1": "B"}})
        assert labels.label_for(1) == "B"
        assert labels.global_threshold == 0.70

    def test_gap_in_indices_rejected(self):
        with pytest.raises(ConfigurationError):
            LabelConfig.from_metadata({"labelMap": {"0": "A", "2": "B"}})

    def test_out_of_range_index_is_unknown(self):
        assert LABELS.label_for(99) == UNKNOWN_INTENT
