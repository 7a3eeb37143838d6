"""Static knowledge base: canned replies, expert tips and regional statistics.

Files under the knowledge directory (all optional)::

    responses.json     {"intents": [{"tag": "GREETING", "responses": [...]}]}
                       or a flat {"GREETING": "Hi!" | ["Hi!", "Hello!"]}
    expert_tips.json   [{"topic": "...", "advice": "..."}]
    dosm_data.json     {"Selangor": "...", "Nasional": "..."}

Everything is loaded once at startup and read-only afterwards.
"""

from __future__ import annotations

import json
import logging
import random
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from beruang.errors import ConfigurationError

logger = logging.getLogger(__name__)

RESPONSES_FILE = "responses.json"
TIPS_FILE = "expert_tips.json"
DOSM_FILE = "dosm_data.json"

NATIONAL_KEY = "Nasional"
MANUAL_PREFIXES = ("HELP_", "NAV_", "DEF_")

# Words this short never index a tip.
_MIN_KEYWORD_LENGTH = 4
MAX_TIPS = 3

Reply = Union[str, Sequence[str]]


@dataclass(frozen=True)
class KnowledgeConfig:
    """Location of the static knowledge files."""

    data_dir: Path = Path("data/knowledge")


@dataclass(frozen=True)
class Tip:
    topic: str
    advice: str

    def render(self) -> str:
        return f"{self.topic}: {self.advice}"


def _keywords(text: str) -> list[str]:
    return [w for w in text.lower().split(" ") if len(w) >= _MIN_KEYWORD_LENGTH]


class KnowledgeStore:
    """Canned replies plus keyword-indexed advice lookup.

    Args:
        replies: Intent → reply text or list of variants.
        tips: Expert tips to index.
        dosm: State → regional statistics text.
        manual_topics: Intent tags included in the app manual context.
        rng: Random source for picking reply variants.
    """

    def __init__(
        self,
        replies: Optional[Mapping[str, Reply]] = None,
        tips: Iterable[Tip] = (),
        dosm: Optional[Mapping[str, str]] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        cleaned: dict[str, Reply] = {}
        for intent, reply in (replies or {}).items():
            if isinstance(reply, str):
                if reply.strip():
                    cleaned[intent] = reply
            else:
                variants = tuple(r for r in reply if isinstance(r, str) and r.strip())
                if variants:
                    cleaned[intent] = variants
        self._replies: Mapping[str, Reply] = MappingProxyType(cleaned)
        self._tips = tuple(tips)
        self._dosm: Mapping[str, str] = MappingProxyType(dict(dosm or {}))
        self._rng = rng or random.Random()

        index: dict[str, list[Tip]] = defaultdict(list)
        for tip in self._tips:
            for keyword in _keywords(tip.topic) + _keywords(tip.advice):
                index[keyword].append(tip)
        self._tips_index = MappingProxyType({k: tuple(v) for k, v in index.items()})

        self._manual = "\n".join(
            f"- Topic: {intent}\n  Info: {self._first_variant(reply)}"
            for intent, reply in self._replies.items()
            if intent.startswith(MANUAL_PREFIXES)
        )

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    @classmethod
    def load(cls, config: KnowledgeConfig, *, rng: Optional[random.Random] = None) -> "KnowledgeStore":
        """Load every knowledge file found in ``config.data_dir``.

        Missing files disable their feature with a warning; a file that
        exists but is not valid JSON of the expected shape raises
        ConfigurationError.
        """
        data_dir = Path(config.data_dir)

        replies: dict[str, Reply] = {}
        raw = _read_json(data_dir / RESPONSES_FILE)
        if isinstance(raw, dict) and isinstance(raw.get("intents"), list):
            for item in raw["intents"]:
                if not isinstance(item, dict) or "tag" not in item:
                    raise ConfigurationError(f"{RESPONSES_FILE}: intent entry without a tag")
                replies[str(item["tag"])] = item.get("responses") or []
        elif isinstance(raw, dict):
            replies = {str(k): v for k, v in raw.items()}
        elif raw is not None:
            raise ConfigurationError(f"{RESPONSES_FILE} must be a JSON object")

        tips: list[Tip] = []
        raw_tips = _read_json(data_dir / TIPS_FILE)
        if raw_tips is not None:
            if not isinstance(raw_tips, list):
                raise ConfigurationError(f"{TIPS_FILE} must be a JSON list")
            for item in raw_tips:
                if isinstance(item, dict) and item.get("topic") and item.get("advice"):
                    tips.append(Tip(str(item["topic"]), str(item["advice"])))

        raw_dosm = _read_json(data_dir / DOSM_FILE)
        if raw_dosm is not None and not isinstance(raw_dosm, dict):
            raise ConfigurationError(f"{DOSM_FILE} must be a JSON object")
        dosm = {str(k): _as_text(v) for k, v in (raw_dosm or {}).items()}

        store = cls(replies, tips, dosm, rng=rng)
        logger.info(
            "[Knowledge] %d intents with replies, %d manual topics, %d tips, %d regions",
            len(store._replies), store.manual_topic_count, len(tips), len(dosm),
        )
        return store

    # -------------------------------------------------------------------------
    # Canned replies
    # -------------------------------------------------------------------------

    def has_reply(self, intent: str) -> bool:
        return intent in self._replies

    def get_reply(self, intent: str) -> Optional[str]:
        """Reply text for ``intent``; a random variant when there are several."""
        reply = self._replies.get(intent)
        if reply is None:
            return None
        if isinstance(reply, str):
            return reply
        return self._rng.choice(reply)

    @property
    def intents(self) -> tuple[str, ...]:
        return tuple(self._replies)

    @staticmethod
    def _first_variant(reply: Reply) -> str:
        return reply if isinstance(reply, str) else reply[0]

    # -------------------------------------------------------------------------
    # App manual
    # -------------------------------------------------------------------------

    @property
    def app_manual(self) -> str:
        """HELP_/NAV_/DEF_ replies rendered as prompt context."""
        return self._manual

    @property
    def manual_topic_count(self) -> int:
        return sum(1 for intent in self._replies if intent.startswith(MANUAL_PREFIXES))

    # -------------------------------------------------------------------------
    # Tips and regional data
    # -------------------------------------------------------------------------

    def relevant_tips(self, message: str, limit: int = MAX_TIPS) -> list[Tip]:
        """Tips sharing the most keywords with ``message``."""
        scores: dict[Tip, int] = {}
        for word in _keywords(message):
            for tip in self._tips_index.get(word, ()):
                scores[tip] = scores.get(tip, 0) + 1
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        return [tip for tip, _ in ranked[:limit]]

    def regional_stats(self, state: Optional[str]) -> str:
        """Statistics for ``state``, falling back to national figures."""
        if not state:
            return ""
        return self._dosm.get(state) or self._dosm.get(NATIONAL_KEY, "")

    def stats(self) -> dict[str, Any]:
        return {
            "intents": len(self._replies),
            "manual_topics": self.manual_topic_count,
            "tips": len(self._tips),
            "regions": len(self._dosm),
        }


def _read_json(path: Path) -> Any:
    if not path.exists():
        logger.warning("[Knowledge] %s not found; feature disabled", path)
        return None
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"cannot read {path}: {e}") from e


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)
