"""Keyword pre-filter for complex finance questions.

Some messages are cheap to recognise lexically and always deserve the
remote model, whatever a narrow classifier would say about them
("should I invest in crypto or stocks for retirement?"). The pre-filter
runs before any model invocation:

- App-help phrasing ("how to add income in this app") → never fires
- Complex starter AND red-flag keyword → fires
- Red-flag keyword AND more than ``min_words_for_red_flag`` words → fires

A firing pre-filter forces a remote route with a synthetic 100% confidence.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

PREFILTER_REASON = "complex query pre-filter"


# =============================================================================
# Configuration
# =============================================================================

DEFAULT_APP_HELP_PATTERNS: tuple[str, ...] = (
    r"^how (to|do i|can i) (add|save|use|check|see|view|delete|edit|remove|track|log|record)",
    r"^where (is|can i|do i|to) (add|find|see|view|check)",
    r"^what (is|does) (this|the) (app|feature|screen|button|page)",
    r"in this app",
    r"in beruang",
    r"this app",
    r"the app",
)

DEFAULT_RED_FLAGS: tuple[str, ...] = (
    "invest", "crypto", "stock", "debt", "loan", "buy", "sell",
    "salary", "finance", "money", "budget", "save for", "afford",
    "survive", "bank", "insurance", "tax", "profit", "loss", "worth",
    "bitcoin", "gold", "property", "car", "house", "wedding",
    "unrealistic", "opinion", "thoughts", "compare", "pros and cons",
)

DEFAULT_COMPLEX_STARTERS: tuple[str, ...] = (
    "why", "how", "what if", "should i", "can i", "explain", "tell me about",
)


@dataclass(frozen=True)
class PreFilterConfig:
    """Word lists for the pre-filter.

    Attributes:
        app_help_patterns: Regexes (case-insensitive) for app-navigation
            questions that bypass the pre-filter entirely.
        red_flags: Substrings marking advice-style finance topics.
        complex_starters: Prefixes marking open-ended questions.
        min_words_for_red_flag: A red flag alone fires above this count.
    """

    app_help_patterns: tuple[str, ...] = DEFAULT_APP_HELP_PATTERNS
    red_flags: tuple[str, ...] = DEFAULT_RED_FLAGS
    complex_starters: tuple[str, ...] = DEFAULT_COMPLEX_STARTERS
    min_words_for_red_flag: int = 5


# =============================================================================
# Match Result
# =============================================================================

@dataclass(frozen=True)
class PreFilterMatch:
    """Result of running the pre-filter on one message.

    Attributes:
        fired: Whether the message must go to the remote model.
        app_help: The app-help allow-list matched (pre-filter bypassed).
        starter: Complex starter that matched, if any.
        red_flag: First red-flag keyword found, if any.
        word_count: Number of words in the message.
    """

    fired: bool
    app_help: bool = False
    starter: Optional[str] = None
    red_flag: Optional[str] = None
    word_count: int = 0

    @property
    def confidence(self) -> float:
        """Synthetic confidence: certain when fired, nothing otherwise."""
        return 1.0 if self.fired else 0.0

    @property
    def reason(self) -> str:
        return PREFILTER_REASON if self.fired else ""


# =============================================================================
# Rules
# =============================================================================

class PreFilterRule(ABC):
    """Base class for pre-filter rules. ``match`` returns the matched term."""

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def match(self, text: str) -> Optional[str]:
        """Return the matching term for lower-cased ``text``, or None."""


class PatternRule(PreFilterRule):
    """Any of a list of regexes found anywhere in the text."""

    def __init__(self, name: str, patterns: tuple[str, ...]) -> None:
        super().__init__(name)
        self.compiled = [re.compile(p, re.IGNORECASE) for p in patterns]

    def match(self, text: str) -> Optional[str]:
        for pattern in self.compiled:
            m = pattern.search(text)
            if m:
                return m.group(0)
        return None


class KeywordRule(PreFilterRule):
    """Any of a list of substrings contained in the text."""

    def __init__(self, name: str, keywords: tuple[str, ...]) -> None:
        super().__init__(name)
        self.keywords = tuple(k.lower() for k in keywords)

    def match(self, text: str) -> Optional[str]:
        for keyword in self.keywords:
            if keyword in text:
                return keyword
        return None


class PrefixRule(PreFilterRule):
    """Text starts with one of a list of phrases."""

    def __init__(self, name: str, prefixes: tuple[str, ...]) -> None:
        super().__init__(name)
        self.prefixes = tuple(p.lower() for p in prefixes)

    def match(self, text: str) -> Optional[str]:
        for prefix in self.prefixes:
            if text.startswith(prefix):
                return prefix
        return None


# =============================================================================
# Pre-filter
# =============================================================================

class PreFilter:
    """Cheap lexical gate in front of the intent classifier.

    Holds only compiled rules; safe to share between concurrent requests.

    Usage:
        prefilter = PreFilter()
        if prefilter.check(message).fired:
            # remote model, classifier never runs
            ...
    """

    def __init__(self, config: Optional[PreFilterConfig] = None) -> None:
        self.config = config or PreFilterConfig()
        self.app_help = PatternRule("app_help", self.config.app_help_patterns)
        self.red_flags = KeywordRule("red_flag", self.config.red_flags)
        self.starters = PrefixRule("complex_starter", self.config.complex_starters)

    def is_app_help(self, text: str) -> bool:
        return self.app_help.match(text.strip().lower()) is not None

    def check(self, text: str) -> PreFilterMatch:
        """Run the pre-filter on a message."""
        lowered = text.strip().lower()
        if not lowered:
            return PreFilterMatch(fired=False)

        word_count = len(lowered.split())

        if self.app_help.match(lowered) is not None:
            logger.debug("[PreFilter] app-help bypass: %r", text[:60])
            return PreFilterMatch(fired=False, app_help=True, word_count=word_count)

        starter = self.starters.match(lowered)
        red_flag = self.red_flags.match(lowered)

        fired = red_flag is not None and (
            starter is not None or word_count > self.config.min_words_for_red_flag
        )
        if fired:
            logger.info(
                "[PreFilter] red flag %r (starter=%r, words=%d) in %r → remote",
                red_flag, starter, word_count, text[:60],
            )

        return PreFilterMatch(
            fired=fired,
            starter=starter,
            red_flag=red_flag,
            word_count=word_count,
        )
