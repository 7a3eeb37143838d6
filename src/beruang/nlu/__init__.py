# SPDX-License-Identifier: MIT
"""
Local intent understanding.

- types: label set, prediction and OOD verdict data structures
- capabilities: pluggable embedders and predictors
- classifier: IntentClassifier wiring them to the label set
- ood: trustworthiness checks on a prediction
"""

from beruang.nlu.capabilities import (
    DenseSoftmaxPredictor,
    Embedder,
    Predictor,
    SentenceEmbedder,
    SequenceEmbedder,
)
from beruang.nlu.classifier import IntentClassifier, IntentModelConfig, build_classifier
from beruang.nlu.ood import OODConfig, detect_ood, normalized_entropy, top_margin
from beruang.nlu.types import UNKNOWN_INTENT, LabelConfig, OODVerdict, Prediction

__all__ = [
    "DenseSoftmaxPredictor",
    "Embedder",
    "IntentClassifier",
    "IntentModelConfig",
    "LabelConfig",
    "OODConfig",
    "OODVerdict",
    "Prediction",
    "Predictor",
    "SentenceEmbedder",
    "SequenceEmbedder",
    "UNKNOWN_INTENT",
    "build_classifier",
    "detect_ood",
    "normalized_entropy",
    "top_margin",
]
