# SPDX-License-Identifier: MIT
"""
Classifier capabilities.

The local intent model is split into two swappable pieces:

- **Embedder**: text → fixed-length numeric vector
  - SequenceEmbedder: normalized token indices (bag-of-words model)
  - SentenceEmbedder: sentence-transformers embedding
- **Predictor**: vector → probability distribution over intents
  - DenseSoftmaxPredictor: feed-forward network exported to ``weights.npz``

Both expose ``load()`` and must be safe to call concurrently once loaded;
nothing here keeps per-call state.
"""

from __future__ import annotations

import logging
import threading
import zipfile
from pathlib import Path
from typing import Any, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from beruang.errors import ModelUnavailable
from beruang.text.normalize import PAD_INDEX, UNKNOWN_INDEX, Vocabulary, normalize

logger = logging.getLogger(__name__)

DEFAULT_SENTENCE_MODEL = "all-MiniLM-L6-v2"


# ============================================================================
# Protocols
# ============================================================================


@runtime_checkable
class Embedder(Protocol):
    """Turns text into the vector a Predictor consumes."""

    produces_sequence: bool

    def load(self) -> None:
        ...

    def embed(self, text: str) -> np.ndarray:
        ...


@runtime_checkable
class Predictor(Protocol):
    """Turns a vector into class probabilities."""

    def load(self) -> None:
        ...

    def predict(self, vector: np.ndarray) -> np.ndarray:
        ...


# ============================================================================
# Embedders
# ============================================================================


class SequenceEmbedder:
    """Token-index embedder backed by the text normalizer."""

    produces_sequence = True

    def __init__(self, vocabulary: Vocabulary):
        self._vocabulary = vocabulary

    @property
    def vocabulary(self) -> Vocabulary:
        return self._vocabulary

    def load(self) -> None:
        # Vocabulary is already in memory.
        return None

    def embed(self, text: str) -> np.ndarray:
        return np.asarray(normalize(text, self._vocabulary), dtype=np.int64)


class SentenceEmbedder:
    """Sentence-transformers embedder (optional ``embeddings`` extra).

    The model is imported and loaded lazily in :meth:`load` so that the
    package stays importable without sentence-transformers installed.
    """

    produces_sequence = False

    def __init__(self, model_name: str = DEFAULT_SENTENCE_MODEL, device: Optional[str] = None):
        self.model_name = model_name
        self.device = device
        self._model: Any = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._model is not None

    def load(self) -> None:
        with self._lock:
            if self._model is not None:
                return
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as e:
                raise ModelUnavailable(
                    "sentence-transformers is not installed (pip install beruang[embeddings])"
                ) from e
            logger.info("[Intent] loading sentence model %s", self.model_name)
            try:
                self._model = SentenceTransformer(self.model_name, device=self.device)
            except Exception as e:
                raise ModelUnavailable(f"failed to load sentence model {self.model_name}: {e}") from e

    def embed(self, text: str) -> np.ndarray:
        model = self._model
        if model is None:
            raise ModelUnavailable("sentence model not loaded")
        vector = model.encode(text, normalize_embeddings=True)
        return np.asarray(vector, dtype=np.float32)


# ============================================================================
# Predictor
# ============================================================================


def softmax(logits: np.ndarray) -> np.ndarray:
    """Numerically stable softmax."""
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / exp.sum()


class DenseSoftmaxPredictor:
    """Feed-forward classifier with ReLU hidden layers and a softmax head.

    ``weights.npz`` holds ``W0, b0, W1, b1, ...`` in layer order and, for
    token-sequence input, an optional ``embedding`` matrix. Sequence input
    is mean-pooled over non-padding tokens before the first layer.
    """

    def __init__(self, weights_path: Optional[Path] = None):
        self.weights_path = weights_path
        self._layers: tuple[tuple[np.ndarray, np.ndarray], ...] = ()
        self._embedding: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    @classmethod
    def from_arrays(
        cls,
        layers: Sequence[tuple[Any, Any]],
        embedding: Any = None,
    ) -> "DenseSoftmaxPredictor":
        """Build an already-loaded predictor from in-memory arrays."""
        predictor = cls()
        predictor._install(
            [(np.asarray(w, dtype=np.float32), np.asarray(b, dtype=np.float32)) for w, b in layers],
            None if embedding is None else np.asarray(embedding, dtype=np.float32),
        )
        return predictor

    @property
    def is_loaded(self) -> bool:
        return bool(self._layers)

    @property
    def output_size(self) -> int:
        if not self._layers:
            return 0
        return int(self._layers[-1][1].shape[0])

    def load(self) -> None:
        with self._lock:
            if self._layers:
                return
            if self.weights_path is None:
                raise ModelUnavailable("no weights file configured")
            try:
                with np.load(self.weights_path) as archive:
                    layers = []
                    i = 0
                    while f"W{i}" in archive.files:
                        layers.append((archive[f"W{i}"].astype(np.float32), archive[f"b{i}"].astype(np.float32)))
                        i += 1
                    embedding = (
                        archive["embedding"].astype(np.float32)
                        if "embedding" in archive.files
                        else None
                    )
            except (OSError, ValueError, KeyError, EOFError, zipfile.BadZipFile) as e:
                raise ModelUnavailable(f"failed to load weights from {self.weights_path}: {e}") from e
            self._install(layers, embedding)
            logger.info(
                "[Intent] loaded %d layer(s) from %s (classes=%d)",
                len(layers), self.weights_path, self.output_size,
            )

    def _install(
        self,
        layers: list[tuple[np.ndarray, np.ndarray]],
        embedding: Optional[np.ndarray],
    ) -> None:
        if not layers:
            raise ModelUnavailable("weights contain no layers")
        width = embedding.shape[1] if embedding is not None else layers[0][0].shape[0]
        for i, (w, b) in enumerate(layers):
            if w.ndim != 2 or w.shape[0] != width or b.shape != (w.shape[1],):
                raise ModelUnavailable(f"layer {i} has incompatible shape {w.shape}/{b.shape}")
            width = w.shape[1]
        self._embedding = embedding
        self._layers = tuple(layers)

    def _pool(self, ids: np.ndarray) -> np.ndarray:
        embedding = self._embedding
        ids = ids.astype(np.int64)
        ids = np.where(ids >= embedding.shape[0], UNKNOWN_INDEX, ids)
        ids = ids[ids != PAD_INDEX]
        if ids.size == 0:
            return np.zeros(embedding.shape[1], dtype=np.float32)
        return embedding[ids].mean(axis=0)

    def predict(self, vector: np.ndarray) -> np.ndarray:
        layers = self._layers
        if not layers:
            raise ModelUnavailable("predictor not loaded")

        x = np.asarray(vector)
        x = self._pool(x) if self._embedding is not None else x.astype(np.float32)

        last = len(layers) - 1
        for i, (w, b) in enumerate(layers):
            x = x @ w + b
            if i < last:
                x = np.maximum(x, 0.0)
        return softmax(x)
