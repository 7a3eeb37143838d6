"""Text normalization package for Beruang."""

from beruang.text.normalize import (
    PAD_INDEX,
    UNKNOWN_INDEX,
    TokenSequence,
    Vocabulary,
    autocorrect,
    clean_text,
    correct_token,
    edit_distance,
    has_signal,
    normalize,
    to_sequence,
    tokenize,
)

__all__ = [
    "PAD_INDEX",
    "UNKNOWN_INDEX",
    "TokenSequence",
    "Vocabulary",
    "autocorrect",
    "clean_text",
    "correct_token",
    "edit_distance",
    "has_signal",
    "normalize",
    "to_sequence",
    "tokenize",
]
