"""Beruang settings: one immutable configuration object per process.

Each component owns its own frozen config dataclass (``OODConfig`` lives next
to the OOD detector, ``StreamConfig`` next to the orchestrator, ...).  This
module only aggregates them into :class:`Settings` and resolves values from:

1. dataclass defaults
2. an optional YAML file (``BERUANG_CONFIG`` or the ``path`` argument)
3. ``BERUANG_<SECTION>_<FIELD>`` environment variables

Example YAML:

    ood:
      decision_threshold: 2
      margin_min: 0.15
    stream:
      heartbeat_interval_s: 10
    prefilter:
      red_flags: [invest, crypto, loan]

Settings are built once at startup and shared read-only; nothing mutates
them at request time.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from beruang.errors import ConfigurationError
from beruang.knowledge.store import KnowledgeConfig
from beruang.llm.openrouter_client import LLMConfig
from beruang.nlu.classifier import IntentModelConfig
from beruang.nlu.ood import OODConfig
from beruang.routing.engine import RoutingConfig
from beruang.routing.preroute import PreFilterConfig
from beruang.search.places import SearchConfig
from beruang.stream.orchestrator import StreamConfig

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "y", "on", "enable", "enabled"}
_FALSY = {"0", "false", "no", "n", "off", "disable", "disabled"}

# Well-known variables that predate the BERUANG_ prefix.
_ENV_ALIASES: dict[tuple[str, str], str] = {
    ("llm", "api_key"): "OPENROUTER_API_KEY",
    ("search", "api_key"): "TAVILY_API_KEY",
}


@dataclass(frozen=True)
class ServerConfig:
    """HTTP server settings."""

    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: tuple[str, ...] = ()
    log_level: str = "info"


@dataclass(frozen=True)
class Settings:
    """Aggregated, immutable process configuration."""

    ood: OODConfig = field(default_factory=OODConfig)
    prefilter: PreFilterConfig = field(default_factory=PreFilterConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)
    intent: IntentModelConfig = field(default_factory=IntentModelConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def load(
        cls,
        path: Optional[str | Path] = None,
        *,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Settings":
        """Build settings from defaults, YAML and environment.

        Args:
            path: YAML file to overlay. Falls back to ``BERUANG_CONFIG``.
            environ: Environment mapping (defaults to ``os.environ``).

        Raises:
            ConfigurationError: The YAML file is unreadable or a value
                cannot be coerced to the field's type.
        """
        env = os.environ if environ is None else environ
        path = path or env.get("BERUANG_CONFIG") or None

        data: dict[str, Any] = {}
        if path is not None:
            data = _read_yaml(Path(path))

        settings = cls()
        sections: dict[str, Any] = {}
        for section_field in dataclasses.fields(cls):
            name = section_field.name
            section = getattr(settings, name)
            overrides = data.get(name) or {}
            if not isinstance(overrides, dict):
                raise ConfigurationError(f"config section '{name}' must be a mapping")
            section = _apply(name, section, overrides, env)
            sections[name] = section

        unknown = set(data) - set(sections)
        if unknown:
            logger.warning("[Config] ignoring unknown sections: %s", ", ".join(sorted(unknown)))

        return cls(**sections)


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(f"config file not found: {path}")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"failed to read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"config root must be a mapping: {path}")
    logger.info("[Config] loaded %s", path)
    return data


def _apply(section_name: str, section: Any, overrides: dict[str, Any], env: Mapping[str, str]) -> Any:
    """Return ``section`` with YAML overrides and env vars applied."""
    changes: dict[str, Any] = {}
    for f in dataclasses.fields(section):
        current = getattr(section, f.name)
        raw: Any = overrides.get(f.name, dataclasses.MISSING)

        env_name = f"BERUANG_{section_name.upper()}_{f.name.upper()}"
        env_raw = str(env.get(env_name, "")).strip()
        if not env_raw and (section_name, f.name) in _ENV_ALIASES:
            env_raw = str(env.get(_ENV_ALIASES[(section_name, f.name)], "")).strip()
        if env_raw:
            raw = env_raw

        if raw is dataclasses.MISSING:
            continue
        try:
            changes[f.name] = _coerce(raw, current, str(f.type))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"invalid value for {section_name}.{f.name}: {raw!r} ({e})"
            ) from e

    unknown = set(overrides) - {f.name for f in dataclasses.fields(section)}
    if unknown:
        logger.warning(
            "[Config] ignoring unknown keys in '%s': %s", section_name, ", ".join(sorted(unknown))
        )
    return dataclasses.replace(section, **changes) if changes else section


def _coerce(raw: Any, current: Any, annotation: str) -> Any:
    """Coerce a YAML/env value to the type of the field's current value."""
    if raw is None:
        return None
    if isinstance(current, bool):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUTHY:
            return True
        if text in _FALSY:
            return False
        raise ValueError("expected a boolean")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    if isinstance(current, (tuple, frozenset)):
        items = raw.split(",") if isinstance(raw, str) else list(raw)
        items = [str(i).strip() for i in items if str(i).strip()]
        return frozenset(items) if isinstance(current, frozenset) else tuple(items)
    if isinstance(current, Path) or (current is None and "Path" in annotation):
        return Path(str(raw)).expanduser()
    return str(raw)
