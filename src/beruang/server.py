"""Beruang service container.

Builds every component once from :class:`~beruang.config.Settings` and
holds them for the lifetime of the process. The HTTP API and the CLI share
the same instance; nothing in here changes after startup except the
classifier's one-shot load.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional

from beruang.config import Settings
from beruang.errors import ModelUnavailable
from beruang.knowledge.store import KnowledgeStore
from beruang.llm.base import LLMClientProtocol
from beruang.llm.openrouter_client import OpenRouterClient
from beruang.nlu.classifier import IntentClassifier, build_classifier
from beruang.routing.engine import RoutingEngine
from beruang.routing.preroute import PreFilter
from beruang.search.places import PlaceSearch
from beruang.stream.orchestrator import ChatOrchestrator

logger = logging.getLogger(__name__)

MODEL_LOADED = "loaded"
MODEL_LOADING = "loading"
MODEL_MISSING = "missing"
MODEL_FAILED = "failed"


class BeruangServer:
    """Shared, read-only set of pipeline components."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        classifier: Optional[IntentClassifier] = None,
        knowledge: Optional[KnowledgeStore] = None,
        llm: Optional[LLMClientProtocol] = None,
        places: Optional[PlaceSearch] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.classifier = classifier
        self.knowledge = knowledge or KnowledgeStore()
        self.llm = llm or OpenRouterClient(self.settings.llm)
        self.places = places if places is not None else PlaceSearch(self.settings.search)

        self.engine = RoutingEngine(
            self.classifier,
            self.knowledge,
            prefilter=PreFilter(self.settings.prefilter),
            ood_config=self.settings.ood,
            config=self.settings.routing,
        )
        self.orchestrator = ChatOrchestrator(
            self.engine,
            self.knowledge,
            self.llm,
            self.places,
            self.settings.stream,
        )
        self._load_error: Optional[str] = None
        self._load_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BeruangServer":
        """Build all components from settings.

        Raises:
            ConfigurationError: Knowledge files or model metadata are
                malformed.
        """
        knowledge = KnowledgeStore.load(settings.knowledge)
        classifier = build_classifier(
            settings.intent, default_threshold=settings.ood.default_threshold
        )
        return cls(settings, classifier=classifier, knowledge=knowledge)

    # ─────────────────────────────────────────────────────────────
    # Intent model lifecycle
    # ─────────────────────────────────────────────────────────────

    @property
    def model_status(self) -> str:
        if self.classifier is None:
            return MODEL_MISSING
        if self.classifier.is_ready:
            return MODEL_LOADED
        if self._load_error is not None:
            return MODEL_FAILED
        return MODEL_LOADING

    @property
    def model_error(self) -> Optional[str]:
        return self._load_error

    def load_model(self) -> bool:
        """Load the classifier (blocking). Returns True when ready.

        A failed load is logged and remembered; requests keep routing
        remotely.
        """
        if self.classifier is None:
            return False
        with self._load_lock:
            try:
                self.classifier.load()
            except ModelUnavailable as e:
                self._load_error = str(e)
                return False
            self._load_error = None
            return True

    async def aclose(self) -> None:
        aclose = getattr(self.llm, "aclose", None)
        if aclose is not None:
            await aclose()
        close = getattr(self.places, "close", None)
        if close is not None:
            close()
