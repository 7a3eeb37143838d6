"""Local-vs-remote routing."""

from beruang.routing.engine import (
    RouteSource,
    RoutingConfig,
    RoutingDecision,
    RoutingEngine,
    apply_context_override,
    is_short_followup,
)
from beruang.routing.preroute import PreFilter, PreFilterConfig, PreFilterMatch

__all__ = [
    "PreFilter",
    "PreFilterConfig",
    "PreFilterMatch",
    "RouteSource",
    "RoutingConfig",
    "RoutingDecision",
    "RoutingEngine",
    "apply_context_override",
    "is_short_followup",
]
