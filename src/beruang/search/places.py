"""Place lookup for location questions ("best nasi lemak near KLCC").

Messages that look like they ask about a real place are sent to the Tavily
search API so the remote model can answer from actual results instead of
inventing restaurants. Results take priority over any canned reply.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

import requests

from beruang.errors import UpstreamFailure

logger = logging.getLogger(__name__)

TAVILY_ENDPOINT = "https://api.tavily.com/search"


@dataclass(frozen=True)
class SearchConfig:
    """Tavily search settings.

    Attributes:
        api_key: Tavily key; None disables the lookup.
        endpoint: Search URL.
        max_results: Results requested per query.
        timeout_s: HTTP timeout.
        search_depth: Tavily ``search_depth`` parameter.
    """

    api_key: Optional[str] = None
    endpoint: str = TAVILY_ENDPOINT
    max_results: int = 5
    timeout_s: float = 10.0
    search_depth: str = "basic"

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


# =============================================================================
# Query heuristics (English + Malay)
# =============================================================================

PLACE_KEYWORDS = (
    "makanan", "makan", "food", "eat", "dining", "lunch", "dinner", "breakfast", "brunch",
    "restaurant", "restoran", "kedai makan",
    "hotel", "hostel", "penginapan", "homestay", "resort",
    "tempat", "place", "location", "lokasi", "attraction", "tarikan",
    "cafe", "kafe", "coffee", "kopi",
    "bar", "pub", "club", "nightlife",
    "shop", "kedai", "mall", "shopping",
    "spa", "massage", "urut",
    "gym", "fitness",
    "clinic", "klinik", "hospital",
)

LOCATION_INDICATORS = (
    "kat", "di", "dekat", "near", "around", "dalam", "in", "at",
    "area", "kawasan", "sekitar",
)

RECOMMENDATION_WORDS = (
    "sedap", "best", "popular", "famous", "terkenal", "recommended", "recommend",
    "cheap", "murah", "affordable", "budget",
    "good", "bagus", "nice", "cantik",
    "top", "terbaik", "suggest", "suggestion",
)

VERIFICATION_WORDS = ("wujud", "exist", "betul ke", "right?", "real?", "mana", "where")

FOOD_KEYWORDS = (
    "makan", "food", "restaurant", "cafe", "warung", "kedai", "sarapan", "lunch", "dinner",
)

_WORD_PATTERN = re.compile(r"\w+")


def _contains_any(lowered: str, words: set[str], terms: tuple[str, ...]) -> bool:
    """Whole-word match for single words, substring match for phrases."""
    for term in terms:
        if term.isalnum():
            if term in words:
                return True
        elif term in lowered:
            return True
    return False


def is_place_query(message: str) -> bool:
    """Heuristic: does the message ask about a physical place?

    True when a place keyword appears together with a location indicator
    or a recommendation word, or when a location indicator appears with a
    verification word ("wujud ke kedai ni kat Bangsar?").
    """
    lowered = message.lower()
    words = set(_WORD_PATTERN.findall(lowered))

    has_place = _contains_any(lowered, words, PLACE_KEYWORDS)
    has_indicator = _contains_any(lowered, words, LOCATION_INDICATORS)
    has_recommendation = _contains_any(lowered, words, RECOMMENDATION_WORDS)
    has_verification = _contains_any(lowered, words, VERIFICATION_WORDS)

    result = (has_place and (has_indicator or has_recommendation)) or (
        has_indicator and has_verification
    )
    if result:
        logger.info("[Search] place query detected: %r", message[:80])
    return result


def with_halal_filter(query: str) -> str:
    """Append "halal" to food queries that do not mention it."""
    lowered = query.lower()
    is_food = any(kw in lowered for kw in FOOD_KEYWORDS)
    if is_food and "halal" not in lowered:
        logger.debug("[Search] appending halal filter to %r", query[:80])
        return f"{query} halal"
    return query


# =============================================================================
# Search
# =============================================================================

@dataclass(frozen=True)
class PlaceResults:
    """Formatted search results ready for the prompt.

    Attributes:
        text: Numbered result list (title, snippet, source URL).
        sources: Result URLs in order.
        answer: Tavily's short answer, when provided.
    """

    text: str
    sources: tuple[str, ...] = ()
    answer: Optional[str] = None


class PlaceSearch:
    """Blocking Tavily client (run it in a worker thread from async code)."""

    def __init__(self, config: Optional[SearchConfig] = None, session: Optional[requests.Session] = None):
        self.config = config or SearchConfig()
        self._session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return self.config.configured

    def search(self, query: str) -> Optional[PlaceResults]:
        """Search for ``query``.

        Returns:
            PlaceResults, or None when unconfigured or nothing was found.

        Raises:
            UpstreamFailure: Transport error, HTTP error or bad payload.
        """
        if not self.config.configured:
            logger.debug("[Search] TAVILY_API_KEY not configured; skipping")
            return None

        payload = {
            "api_key": self.config.api_key,
            "query": query,
            "search_depth": self.config.search_depth,
            "include_answer": True,
            "include_raw_content": False,
            "max_results": self.config.max_results,
        }
        logger.info("[Search] searching for %r", query[:80])
        try:
            response = self._session.post(
                self.config.endpoint, json=payload, timeout=self.config.timeout_s
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise UpstreamFailure(f"place search failed: {e}") from e
        except ValueError as e:
            raise UpstreamFailure(f"place search returned invalid JSON: {e}") from e

        return format_results(data)

    def close(self) -> None:
        """Release the pooled HTTP connections."""
        self._session.close()


def format_results(data: Any) -> Optional[PlaceResults]:
    """Turn a Tavily response body into PlaceResults (None if empty)."""
    if not isinstance(data, dict):
        raise UpstreamFailure("place search returned an unexpected payload")
    results = [r for r in data.get("results") or [] if isinstance(r, dict)]
    if not results:
        logger.info("[Search] no results")
        return None

    lines = [
        f"{i}. {r.get('title', '')}\n   {r.get('content', '')}\n   Source: {r.get('url', '')}"
        for i, r in enumerate(results, start=1)
    ]
    logger.info("[Search] %d result(s)", len(results))
    return PlaceResults(
        text="\n\n".join(lines),
        sources=tuple(str(r.get("url", "")) for r in results),
        answer=data.get("answer") or None,
    )
