"""Tests for place-query detection and the Tavily search client."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import requests

from beruang.errors import UpstreamFailure
from beruang.search.places import (
    PlaceSearch,
    SearchConfig,
    format_results,
    is_place_query,
    with_halal_filter,
)


class TestPlaceQuery:

    @pytest.mark.parametrize(
        "message",
        [
            "best nasi lemak restaurant near KLCC",
            "cheap hotel in Penang",
            "kedai makan sedap kat Bangsar",
            "wujud ke kedai ni kat Bangsar?",
            "recommend a good cafe",
        ],
    )
    def test_place_queries(self, message):
        assert is_place_query(message)

    @pytest.mark.parametrize(
        "message",
        [
            "hello",
            "spent 12 on lunch",
            "how much did i spend this month",
            "should i invest in gold",
        ],
    )
    def test_non_place_queries(self, message):
        assert not is_place_query(message)

    def test_whole_word_matching(self):
        """'in' inside 'invest' is not a location indicator."""
        assert not is_place_query("investing shop")


class TestHalalFilter:

    def test_appends_for_food(self):
        assert with_halal_filter("nasi lemak restaurant KL") == "nasi lemak restaurant KL halal"

    def test_no_duplicate(self):
        assert with_halal_filter("halal food Penang") == "halal food Penang"

    def test_not_food(self):
        assert with_halal_filter("hotel in Penang") == "hotel in Penang"


class TestPlaceSearch:

    def _session(self, payload=None, error=None):
        session = MagicMock(spec=requests.Session)
        response = MagicMock()
        if error is not None:
            session.post.side_effect = error
        else:
            response.json.return_value = payload
            session.post.return_value = response
        return session

    def test_unconfigured_returns_none(self):
        session = self._session()
        search = PlaceSearch(SearchConfig(), session=session)
        assert not search.configured
        assert search.search("cafe near me") is None
        session.post.assert_not_called()

    def test_results_formatted(self):
        session = self._session(
            {
                "answer": "Try Village Park.",
                "results": [
                    {"title": "Village Park", "content": "Famous nasi lemak", "url": "https://a.example"},
                    {"title": "Nasi Lemak Tanglin", "content": "Since 1948", "url": "https://b.example"},
                ],
            }
        )
        search = PlaceSearch(SearchConfig(api_key="tvly-test", max_results=3), session=session)
        results = search.search("nasi lemak KL halal")

        assert results is not None
        assert results.sources == ("https://a.example", "https://b.example")
        assert results.answer == "Try Village Park."
        assert results.text.startswith("1. Village Park")
        assert "Source: https://b.example" in results.text

        kwargs = session.post.call_args.kwargs
        assert kwargs["json"]["query"] == "nasi lemak KL halal"
        assert kwargs["json"]["max_results"] == 3

    def test_empty_results(self):
        search = PlaceSearch(SearchConfig(api_key="k"), session=self._session({"results": []}))
        assert search.search("x") is None

    def test_transport_error(self):
        session = self._session(error=requests.ConnectionError("boom"))
        search = PlaceSearch(SearchConfig(api_key="k"), session=session)
        with pytest.raises(UpstreamFailure):
            search.search("cafe near KLCC")

    def test_bad_payload(self):
        with pytest.raises(UpstreamFailure):
            format_results(["not", "a", "dict"])

    def test_close_releases_session(self):
        session = self._session()
        PlaceSearch(SearchConfig(api_key="k"), session=session).close()
        session.close.assert_called_once()
