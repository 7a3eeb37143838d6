from __future__ import annotations

import asyncio
import random
from typing import Any, Optional, Sequence

import numpy as np
import pytest

from beruang.errors import StreamInterrupted, UpstreamFailure
from beruang.knowledge.store import KnowledgeStore, Tip
from beruang.llm.base import LLMMessage
from beruang.nlu.classifier import IntentClassifier
from beruang.nlu.capabilities import SequenceEmbedder
from beruang.nlu.types import LabelConfig
from beruang.routing.engine import RoutingEngine
from beruang.search.places import PlaceResults
from beruang.stream.orchestrator import ChatOrchestrator, StreamConfig
from beruang.text.normalize import Vocabulary


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run tests marked with @pytest.mark.integration (real OpenRouter / Tavily keys).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-integration"):
        return

    selected: list[pytest.Item] = []
    deselected: list[pytest.Item] = []
    for item in items:
        if item.get_closest_marker("integration"):
            deselected.append(item)
            continue
        selected.append(item)

    if deselected:
        config.hook.pytest_deselected(items=deselected)
        items[:] = selected


# ─────────────────────────────────────────────────────────────
# Tiny intent model
# ─────────────────────────────────────────────────────────────

WORDS = {
    "hello": 2,
    "hi": 3,
    "spent": 4,
    "lunch": 5,
    "coffee": 6,
    "budget": 7,
    "wow": 8,
    "income": 9,
}

LABELS = ("GREETING", "LOG_EXPENSE", "COMPLEX_ADVICE", "GARBAGE")

GREETING_PROBS = (0.95, 0.03, 0.01, 0.01)
EXPENSE_PROBS = (0.02, 0.94, 0.02, 0.02)
ADVICE_PROBS = (0.02, 0.02, 0.94, 0.02)
GARBAGE_PROBS = (0.01, 0.01, 0.02, 0.96)
AMBIGUOUS_PROBS = (0.48, 0.46, 0.03, 0.03)

GREETING_REPLY = "Hello! I'm Beruang, your finance pal 🐻"
EXPENSE_REPLY = "Got it, I'll track that 🐻"


class KeywordPredictor:
    """Returns a fixed distribution keyed on the last known token id."""

    def __init__(self, rules: dict[int, Sequence[float]], n_classes: int = len(LABELS)):
        self.rules = rules
        self.n_classes = n_classes
        self.calls = 0
        self.loaded = False

    def load(self) -> None:
        self.loaded = True

    def predict(self, vector: np.ndarray) -> np.ndarray:
        self.calls += 1
        for token in reversed([int(t) for t in vector]):
            if token in self.rules:
                return np.asarray(self.rules[token], dtype=np.float64)
        return np.full(self.n_classes, 1.0 / self.n_classes)


def default_rules() -> dict[int, Sequence[float]]:
    return {
        WORDS["hello"]: GREETING_PROBS,
        WORDS["hi"]: GREETING_PROBS,
        WORDS["spent"]: EXPENSE_PROBS,
        WORDS["lunch"]: EXPENSE_PROBS,
        WORDS["coffee"]: AMBIGUOUS_PROBS,
        WORDS["budget"]: ADVICE_PROBS,
        WORDS["wow"]: GARBAGE_PROBS,
    }


@pytest.fixture()
def vocabulary() -> Vocabulary:
    return Vocabulary(WORDS, max_len=20)


@pytest.fixture()
def labels() -> LabelConfig:
    return LabelConfig(labels=LABELS, global_threshold=0.70)


@pytest.fixture()
def predictor() -> KeywordPredictor:
    return KeywordPredictor(default_rules())


@pytest.fixture()
def classifier(vocabulary, predictor, labels) -> IntentClassifier:
    clf = IntentClassifier(SequenceEmbedder(vocabulary), predictor, labels)
    clf.load()
    return clf


# ─────────────────────────────────────────────────────────────
# Knowledge
# ─────────────────────────────────────────────────────────────

@pytest.fixture()
def knowledge() -> KnowledgeStore:
    return KnowledgeStore(
        replies={
            "GREETING": GREETING_REPLY,
            "LOG_EXPENSE": [EXPENSE_REPLY],
            "COMPLEX_ADVICE": "This reply must never be served.",
            "HELP_ADD_INCOME": "Tap the + button on the home screen and choose Income.",
        },
        tips=[
            Tip("Emergency fund", "Keep three to six months of expenses saved before investing."),
            Tip("Groceries budget", "Plan weekly meals and shop with a list."),
        ],
        dosm={"Nasional": "National median income RM6,338.", "Selangor": "Selangor median income RM8,815."},
        rng=random.Random(7),
    )


@pytest.fixture()
def engine(classifier, knowledge) -> RoutingEngine:
    return RoutingEngine(classifier, knowledge)


# ─────────────────────────────────────────────────────────────
# Remote model and place search fakes
# ─────────────────────────────────────────────────────────────

class ScriptedLLM:
    """Remote model that replays fixed fragments.

    ``fail_after`` raises ``error`` (default StreamInterrupted) once that
    many fragments have been delivered.
    """

    def __init__(
        self,
        fragments: Sequence[str] = ("Hello ", "from ", "the ", "remote ", "model."),
        *,
        delay_s: float = 0.0,
        first_delay_s: float = 0.0,
        fail_after: Optional[int] = None,
        error: Optional[BaseException] = None,
        chat_reply: str = "Remote reply",
        chat_error: Optional[BaseException] = None,
        configured: bool = True,
    ):
        self.fragments = tuple(fragments)
        self.delay_s = delay_s
        self.first_delay_s = first_delay_s
        self.fail_after = fail_after
        self.error = error
        self.chat_reply = chat_reply
        self.chat_error = chat_error
        self._configured = configured
        self.chat_calls: list[tuple[list[LLMMessage], bool]] = []
        self.stream_calls: list[tuple[list[LLMMessage], bool]] = []
        self.stream_closed = False

    @property
    def configured(self) -> bool:
        return self._configured

    @property
    def model_name(self) -> str:
        return "scripted"

    async def chat(self, messages: list[LLMMessage], *, grounded: bool = False) -> str:
        self.chat_calls.append((list(messages), grounded))
        if self.chat_error is not None:
            raise self.chat_error
        return self.chat_reply

    async def stream(self, messages: list[LLMMessage], *, grounded: bool = False):
        self.stream_calls.append((list(messages), grounded))
        delivered = 0
        try:
            if self.first_delay_s:
                await asyncio.sleep(self.first_delay_s)
            for i, fragment in enumerate(self.fragments):
                if self.fail_after is not None and i == self.fail_after:
                    raise self.error or StreamInterrupted("connection reset", delivered=delivered)
                if self.delay_s:
                    await asyncio.sleep(self.delay_s)
                delivered += len(fragment)
                yield fragment
            if self.fail_after is not None and self.fail_after >= len(self.fragments):
                raise self.error or StreamInterrupted("connection reset", delivered=delivered)
        finally:
            self.stream_closed = True


class StaticPlaces:
    """Place search returning a fixed result (or raising)."""

    configured = True

    def __init__(self, results: Optional[PlaceResults] = None, error: Optional[BaseException] = None):
        self.results = results
        self.error = error
        self.queries: list[str] = []

    def search(self, query: str) -> Optional[PlaceResults]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return self.results


@pytest.fixture()
def scripted_llm():
    """Factory: ``scripted_llm(fragments, fail_after=..., ...)``."""
    return ScriptedLLM


@pytest.fixture()
def static_places():
    """Factory: ``static_places(results=..., error=...)``."""
    return StaticPlaces


@pytest.fixture()
def failing_places() -> StaticPlaces:
    return StaticPlaces(error=UpstreamFailure("search backend down"))


@pytest.fixture()
def found_places() -> StaticPlaces:
    return StaticPlaces(
        results=PlaceResults(
            text="1. Nasi Lemak Bumbung\n   Famous nasi lemak in PJ.\n   Source: https://example.com/bumbung",
            sources=("https://example.com/bumbung",),
        )
    )


FAST_STREAM = StreamConfig(token_delay_s=0.0, heartbeat_interval_s=5.0)


@pytest.fixture()
def make_orchestrator(engine, knowledge):
    """Factory: ``make_orchestrator(llm, places=None, config=None)``."""

    def _make(llm: Any, places: Any = None, config: Optional[StreamConfig] = None) -> ChatOrchestrator:
        return ChatOrchestrator(engine, knowledge, llm, places, config or FAST_STREAM)

    return _make
