"""External place lookup."""

from beruang.search.places import (
    PlaceResults,
    PlaceSearch,
    SearchConfig,
    format_results,
    is_place_query,
    with_halal_filter,
)

__all__ = [
    "PlaceResults",
    "PlaceSearch",
    "SearchConfig",
    "format_results",
    "is_place_query",
    "with_halal_filter",
]
