# SPDX-License-Identifier: MIT
"""
Local intent classifier.

Wires an Embedder and a Predictor to the intent label set:

    text → embed → predict → Prediction

This is the "fast but narrow" path. Every prediction still has to pass the
OOD detector before a canned reply is served.

Model directory layout::

    <model_dir>/
        metadata.json   # wordIndex, maxLen, vocabSize, labelMap, thresholds
        weights.npz     # W0, b0, W1, b1, ... (+ optional embedding)
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from beruang.errors import ConfigurationError, ModelUnavailable, NoSignal
from beruang.nlu.capabilities import (
    DEFAULT_SENTENCE_MODEL,
    DenseSoftmaxPredictor,
    Embedder,
    Predictor,
    SentenceEmbedder,
    SequenceEmbedder,
)
from beruang.nlu.types import LabelConfig, Prediction
from beruang.text.normalize import Vocabulary, clean_text

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
WEIGHTS_FILE = "weights.npz"


# ============================================================================
# Configuration
# ============================================================================


@dataclass(frozen=True)
class IntentModelConfig:
    """Where the local model lives and which embedder it expects.

    Attributes:
        model_dir: Directory with ``metadata.json`` and ``weights.npz``.
            None disables the local classifier.
        embedder: ``"sequence"`` (token indices) or ``"sentence"``.
        sentence_model: sentence-transformers model name.
    """

    model_dir: Optional[Path] = None
    embedder: str = "sequence"
    sentence_model: str = DEFAULT_SENTENCE_MODEL


# ============================================================================
# Classifier
# ============================================================================


class IntentClassifier:
    """Embed + predict over a fixed label set.

    ``load()`` runs once; afterwards the instance is read-only and
    ``classify()`` may be called from any number of threads.
    """

    def __init__(self, embedder: Embedder, predictor: Predictor, labels: LabelConfig):
        self._embedder = embedder
        self._predictor = predictor
        self._labels = labels
        self._ready = False
        self._load_lock = threading.Lock()

    @property
    def labels(self) -> LabelConfig:
        return self._labels

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def produces_sequence(self) -> bool:
        return bool(getattr(self._embedder, "produces_sequence", False))

    def load(self) -> None:
        """Load both capabilities.

        Raises:
            ModelUnavailable: Either capability failed to load.
        """
        with self._load_lock:
            if self._ready:
                return
            try:
                self._embedder.load()
                self._predictor.load()
            except ModelUnavailable as e:
                logger.error("[Intent] model failed to load: %s", e)
                raise
            self._ready = True
            logger.info("[Intent] classifier ready (%d intents)", len(self._labels))

    def classify(self, text: str) -> Prediction:
        """Return the intent distribution for ``text``.

        Raises:
            ModelUnavailable: ``load()`` has not completed.
            NoSignal: Nothing is left of ``text`` after cleaning.
        """
        if not self._ready:
            raise ModelUnavailable("intent model not loaded")
        if not clean_text(text):
            raise NoSignal("message has no words")

        vector = self._embedder.embed(text)
        probabilities = self._predictor.predict(vector)
        if len(probabilities) != len(self._labels):
            raise ModelUnavailable(
                f"model returned {len(probabilities)} classes, label set has {len(self._labels)}"
            )

        sequence = tuple(int(t) for t in vector) if self.produces_sequence else None
        return Prediction.from_scores(probabilities, sequence)


# ============================================================================
# Factory
# ============================================================================


def read_metadata(model_dir: Path) -> dict[str, Any]:
    """Parse ``metadata.json``.

    Raises:
        ConfigurationError: File missing, unreadable or not a JSON object.
    """
    path = model_dir / METADATA_FILE
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a JSON object")
    return data


def build_classifier(
    config: IntentModelConfig,
    *,
    default_threshold: float = 0.70,
) -> Optional[IntentClassifier]:
    """Create an (unloaded) classifier from the model directory.

    Returns None when no model directory is configured or it does not
    exist; the service then routes every message remotely.

    Raises:
        ConfigurationError: Metadata is malformed or the embedder kind is
            unknown.
    """
    model_dir = config.model_dir
    if model_dir is None or not Path(model_dir).is_dir():
        logger.warning(
            "[Intent] model directory %s not found; local replies disabled", model_dir
        )
        return None

    model_dir = Path(model_dir)
    metadata = read_metadata(model_dir)
    labels = LabelConfig.from_metadata(metadata, default_threshold=default_threshold)

    embedder: Embedder
    if config.embedder == "sequence":
        embedder = SequenceEmbedder(Vocabulary.from_metadata(metadata))
    elif config.embedder == "sentence":
        embedder = SentenceEmbedder(config.sentence_model)
    else:
        raise ConfigurationError(f"unknown embedder kind: {config.embedder!r}")

    predictor = DenseSoftmaxPredictor(model_dir / WEIGHTS_FILE)
    logger.info(
        "[Intent] model at %s (embedder=%s, intents=%d)", model_dir, config.embedder, len(labels)
    )
    return IntentClassifier(embedder, predictor, labels)
