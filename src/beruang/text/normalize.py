"""Text normalization and fuzzy correction for the intent classifier.

Turns a raw chat message into the fixed-length token sequence the local
classifier was trained on:

- Lower-case, replace anything that is not a letter/digit/space, collapse
  whitespace
- Fuzzy-correct unknown tokens (>= 4 chars) against the vocabulary using
  Levenshtein distance, searching only words with the same first letter
- Map tokens to indices (0 = padding, 1 = unknown, >= 2 = known word)
- Keep the most recent ``max_len`` tokens, left-pad with zeros

Everything here is a pure function of its inputs.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from rapidfuzz.distance import Levenshtein

from beruang.errors import ConfigurationError

PAD_INDEX = 0
UNKNOWN_INDEX = 1

# Tokens shorter than this are never corrected
MIN_CORRECTION_LENGTH = 4
# Tokens longer than this tolerate two edits, shorter ones only one
LONG_TOKEN_LENGTH = 6

DEFAULT_MAX_LEN = 20
DEFAULT_VOCAB_LIMIT = 10000

_NON_WORD_PATTERN = re.compile(r"[^\w\s]|_")
_WHITESPACE_PATTERN = re.compile(r"\s+")

TokenSequence = tuple[int, ...]


@dataclass(frozen=True)
class Vocabulary:
    """Known word → index mapping, immutable after construction.

    Attributes:
        word_index: Word to integer index (indices >= 2).
        max_len: Output sequence length.
        vocab_limit: Indices >= this limit are treated as unknown.
    """

    word_index: Mapping[str, int]
    max_len: int = DEFAULT_MAX_LEN
    vocab_limit: int = DEFAULT_VOCAB_LIMIT
    _by_initial: Mapping[str, tuple[str, ...]] = field(
        default_factory=dict, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.max_len <= 0:
            raise ConfigurationError(f"max_len must be positive, got {self.max_len}")
        frozen = MappingProxyType(dict(self.word_index))
        grouped: dict[str, list[str]] = defaultdict(list)
        for word in sorted(frozen):
            if word:
                grouped[word[0]].append(word)
        object.__setattr__(self, "word_index", frozen)
        object.__setattr__(
            self,
            "_by_initial",
            MappingProxyType({k: tuple(v) for k, v in grouped.items()}),
        )

    def __contains__(self, word: object) -> bool:
        return word in self.word_index

    def __len__(self) -> int:
        return len(self.word_index)

    def index_of(self, word: str) -> int:
        """Index of ``word``, or UNKNOWN_INDEX if absent or beyond the limit."""
        index = self.word_index.get(word)
        if index is None or index >= self.vocab_limit:
            return UNKNOWN_INDEX
        return index

    def candidates(self, initial: str) -> tuple[str, ...]:
        """Vocabulary words starting with ``initial``."""
        return self._by_initial.get(initial, ())

    @classmethod
    def from_metadata(cls, metadata: Mapping[str, Any]) -> "Vocabulary":
        """Build from the classifier's ``metadata.json`` payload.

        Expected keys: ``wordIndex`` (required), ``maxLen``,
        ``maxVocabSize`` or ``vocabSize``.
        """
        word_index = metadata.get("wordIndex")
        if not isinstance(word_index, Mapping) or not word_index:
            raise ConfigurationError("metadata.wordIndex missing or empty")
        try:
            cleaned = {str(w): int(i) for w, i in word_index.items()}
            max_len = int(metadata.get("maxLen") or DEFAULT_MAX_LEN)
            limit = int(
                metadata.get("maxVocabSize") or metadata.get("vocabSize") or DEFAULT_VOCAB_LIMIT
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"malformed vocabulary metadata: {e}") from e
        return cls(word_index=cleaned, max_len=max_len, vocab_limit=limit)


# =============================================================================
# Cleaning
# =============================================================================

def clean_text(text: str) -> str:
    """Lower-case, drop non-alphanumerics and collapse whitespace."""
    lowered = (text or "").lower()
    stripped = _NON_WORD_PATTERN.sub(" ", lowered)
    return _WHITESPACE_PATTERN.sub(" ", stripped).strip()


def tokenize(text: str) -> list[str]:
    """Split cleaned text into tokens."""
    cleaned = clean_text(text)
    return cleaned.split(" ") if cleaned else []


# =============================================================================
# Fuzzy correction
# =============================================================================

def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance between two strings."""
    return Levenshtein.distance(a, b)


def correct_token(token: str, vocabulary: Vocabulary) -> str:
    """Return the closest vocabulary word for an unknown token.

    The candidate must be within 2 edits (tokens longer than 6 chars) or
    1 edit (otherwise) and must be the unique closest match. Ties, short
    tokens and tokens with no candidate come back unchanged.
    """
    if token in vocabulary or len(token) < MIN_CORRECTION_LENGTH:
        return token

    max_distance = 2 if len(token) > LONG_TOKEN_LENGTH else 1
    best: str | None = None
    best_distance = max_distance + 1
    tied = False

    for candidate in vocabulary.candidates(token[0]):
        distance = Levenshtein.distance(token, candidate, score_cutoff=max_distance)
        if distance > max_distance:
            continue
        if distance < best_distance:
            best, best_distance, tied = candidate, distance, False
        elif distance == best_distance:
            tied = True

    if best is None or tied:
        return token
    return best


def autocorrect(tokens: Iterable[str], vocabulary: Vocabulary) -> list[str]:
    """Fuzzy-correct every token against the vocabulary."""
    return [correct_token(t, vocabulary) for t in tokens]


# =============================================================================
# Sequencing
# =============================================================================

def to_sequence(tokens: Iterable[str], vocabulary: Vocabulary) -> TokenSequence:
    """Map tokens to indices, keep the last ``max_len`` and left-pad."""
    indices = [vocabulary.index_of(t) for t in tokens]
    max_len = vocabulary.max_len
    if len(indices) >= max_len:
        return tuple(indices[-max_len:])
    return tuple([PAD_INDEX] * (max_len - len(indices)) + indices)


def normalize(text: str, vocabulary: Vocabulary) -> TokenSequence:
    """Clean, correct and index ``text``.

    Example:
        >>> vocab = Vocabulary({"hello": 2, "budget": 3}, max_len=4)
        >>> normalize("Helo, my BUDGET!", vocab)
        (0, 2, 1, 3)
    """
    return to_sequence(autocorrect(tokenize(text), vocabulary), vocabulary)


def has_signal(sequence: Iterable[int]) -> bool:
    """True when at least one token is a known word."""
    return any(t > UNKNOWN_INDEX for t in sequence)
