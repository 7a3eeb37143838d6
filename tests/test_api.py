"""Tests for the Beruang REST API.

Tests cover:
  - POST /api/v1/chat/stream (SSE event sequence, validation)
  - POST /api/v1/chat (local, remote, upstream failure)
  - GET  /api/v1/route
  - GET  /api/v1/health
  - Request body aliases and history formats
  - CORS configuration
  - Error handling
"""
from __future__ import annotations

import json
from typing import Any

import pytest
from fastapi.testclient import TestClient

from beruang.api.server import _get_cors_config, create_app
from beruang.config import ServerConfig, Settings
from beruang.knowledge.store import KnowledgeConfig
from beruang.llm.base import LLMConnectionError
from beruang.server import BeruangServer
from beruang.stream.orchestrator import StreamConfig

COMPLEX_MESSAGE = "should i invest in crypto or stocks for retirement"


# ─────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def _reset_sse_exit_event():
    """sse-starlette 2.x keeps a class-level exit event bound to the first loop."""
    from sse_starlette import sse

    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None


@pytest.fixture()
def llm(scripted_llm):
    return scripted_llm(("Spread ", "your ", "risk."), chat_reply="Spread your risk.")


@pytest.fixture()
def beruang_server(classifier, knowledge, llm, static_places) -> BeruangServer:
    settings = Settings(stream=StreamConfig(token_delay_s=0.0))
    return BeruangServer(
        settings,
        classifier=classifier,
        knowledge=knowledge,
        llm=llm,
        places=static_places(),
    )


@pytest.fixture()
def app(beruang_server):
    return create_app(Settings(), beruang_server=beruang_server)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


def parse_sse(text: str) -> list[tuple[str, dict[str, Any]]]:
    """Parse an SSE body into (event, data) pairs, skipping comments."""
    events = []
    event, data = None, []
    for line in text.splitlines():
        if not line:
            if event is not None:
                events.append((event, json.loads("\n".join(data))))
            event, data = None, []
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data.append(line[len("data:"):].strip())
    if event is not None:
        events.append((event, json.loads("\n".join(data))))
    return events


def stream_events(client: TestClient, body: dict[str, Any]):
    with client.stream("POST", "/api/v1/chat/stream", json=body) as resp:
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        text = "".join(resp.iter_text())
    return parse_sse(text)


# ─────────────────────────────────────────────────────────────
# Streaming endpoint
# ─────────────────────────────────────────────────────────────

class TestChatStream:
    """POST /api/v1/chat/stream tests."""

    def test_local_reply_sequence(self, client, knowledge):
        events = stream_events(client, {"message": "spent 12 on lunch"})
        names = [name for name, _ in events]
        assert names[0] == "thinking"
        assert names[-1] == "done"
        tokens = [data["content"] for name, data in events if name == "token"]
        reply = knowledge.get_reply("LOG_EXPENSE")
        assert len(tokens) == len(reply.split())
        assert "".join(tokens).strip() == reply
        assert events[-1][1]["source"] == "local"
        assert events[-1][1]["intent"] == "LOG_EXPENSE"

    def test_remote_reply_sequence(self, client, llm):
        events = stream_events(client, {"message": COMPLEX_MESSAGE})
        tokens = [data["content"] for name, data in events if name == "token"]
        assert tokens == ["Spread ", "your ", "risk."]
        assert all(data["done"] is False for name, data in events if name == "token")
        assert events[-1] == ("done", {"source": "remote", "response_time_ms": events[-1][1]["response_time_ms"]})
        assert len(llm.stream_calls) == 1

    def test_error_event(self, client, llm):
        llm.fail_after = 0
        llm.error = LLMConnectionError("boom")
        events = stream_events(client, {"message": COMPLEX_MESSAGE})
        assert [name for name, _ in events] == ["thinking", "error"]
        assert events[-1][1] == {"error": "Stream failed 🐻💔"}

    def test_blank_message_rejected(self, client):
        resp = client.post("/api/v1/chat/stream", json={"message": "   "})
        assert resp.status_code == 400
        assert resp.json()["code"] == "empty_message"
        assert resp.json()["ok"] is False

    def test_empty_message_rejected(self, client):
        assert client.post("/api/v1/chat/stream", json={"message": ""}).status_code == 422

    def test_missing_message_rejected(self, client):
        assert client.post("/api/v1/chat/stream", json={}).status_code == 422

    def test_history_parts_format(self, client, llm):
        body = {
            "message": COMPLEX_MESSAGE,
            "history": [
                {"role": "user", "parts": [{"text": "hi"}]},
                {"role": "model", "parts": [{"text": "Hello! "}, {"text": "🐻"}]},
            ],
        }
        stream_events(client, body)
        messages, _ = llm.stream_calls[0]
        assert [(m.role, m.content) for m in messages[1:3]] == [("user", "hi"), ("assistant", "Hello! 🐻")]


# ─────────────────────────────────────────────────────────────
# Non-streaming endpoint
# ─────────────────────────────────────────────────────────────

class TestChat:
    """POST /api/v1/chat tests."""

    def test_local(self, client, knowledge):
        resp = client.post("/api/v1/chat", json={"message": "hello"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["ok"] is True
        assert data["source"] == "local"
        assert data["intent"] == "GREETING"
        assert data["response"] == knowledge.get_reply("GREETING")
        assert data["reason"] is None

    def test_remote(self, client):
        data = client.post("/api/v1/chat", json={"message": COMPLEX_MESSAGE}).json()
        assert data["source"] == "remote"
        assert data["response"] == "Spread your risk."
        assert data["reason"] == "complex query pre-filter"

    def test_camel_case_profile(self, client, llm):
        body = {
            "message": COMPLEX_MESSAGE,
            "userProfile": {"name": "Hafiz", "state": "Kelantan"},
            "budgetContext": "Needs at 40%.",
        }
        assert client.post("/api/v1/chat", json=body).status_code == 200
        prompt = llm.chat_calls[0][0][-1].content
        assert "Hafiz" in prompt
        assert "Needs at 40%." in prompt

    def test_upstream_failure(self, client, llm):
        llm.chat_error = LLMConnectionError("down")
        resp = client.post("/api/v1/chat", json={"message": COMPLEX_MESSAGE})
        assert resp.status_code == 502
        assert resp.json()["code"] == "upstream_error"

    def test_too_long_message_rejected(self, client):
        assert client.post("/api/v1/chat", json={"message": "x" * 5000}).status_code == 422

    def test_unhandled_error_returns_500(self, app, beruang_server, monkeypatch):
        async def boom(turn):
            raise RuntimeError("unexpected")

        monkeypatch.setattr(beruang_server.orchestrator, "respond", boom)
        with TestClient(app, raise_server_exceptions=False) as c:
            resp = c.post("/api/v1/chat", json={"message": "hello"})
        assert resp.status_code == 500
        assert resp.json()["code"] == "internal_error"


# ─────────────────────────────────────────────────────────────
# Route and health
# ─────────────────────────────────────────────────────────────

class TestRoute:

    def test_route_local(self, client):
        data = client.get("/api/v1/route", params={"message": "hello"}).json()
        assert data["decision"]["source"] == "local"
        assert data["decision"]["ood"]["is_ood"] is False
        assert data["place_query"] is False

    def test_route_prefilter(self, client, predictor):
        data = client.get("/api/v1/route", params={"message": COMPLEX_MESSAGE}).json()
        assert data["decision"]["prefilter_fired"] is True
        assert data["decision"]["classifier_invoked"] is False
        assert predictor.calls == 0

    def test_route_requires_message(self, client):
        assert client.get("/api/v1/route").status_code == 422


class TestHealth:
    """GET /api/v1/health tests."""

    def test_all_components_ok(self, client):
        data = client.get("/api/v1/health").json()
        assert data["status"] == "ok"
        assert data["uptime_seconds"] >= 0
        names = {c["name"]: c for c in data["components"]}
        assert names["intent_model"]["detail"] == "loaded"
        assert names["remote_llm"]["status"] == "ok"
        assert names["knowledge"]["status"] == "ok"

    def test_degraded_without_model_or_keys(self, tmp_path, monkeypatch):
        """Startup without a model or API keys still serves, degraded."""
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        settings = Settings(knowledge=KnowledgeConfig(tmp_path))
        with TestClient(create_app(settings)) as c:
            data = c.get("/api/v1/health").json()
            assert data["status"] == "degraded"
            names = {comp["name"]: comp for comp in data["components"]}
            assert names["intent_model"]["detail"] == "missing"
            assert names["remote_llm"]["detail"] == "missing_api_key"
            assert names["web_search"]["detail"] == "not_configured"

            route = c.get("/api/v1/route", params={"message": "hello"}).json()
            assert route["decision"]["reason"] == "model unavailable"


class TestCors:

    def test_default_dev_origins(self, monkeypatch):
        monkeypatch.delenv("BERUANG_CORS_ORIGINS", raising=False)
        origins, regex = _get_cors_config(Settings())
        assert "http://localhost:3000" in origins
        assert regex is not None

    def test_configured_origins(self, monkeypatch):
        monkeypatch.delenv("BERUANG_CORS_ORIGINS", raising=False)
        settings = Settings(server=ServerConfig(cors_origins=("https://beruang.example",)))
        assert _get_cors_config(settings) == (["https://beruang.example"], None)

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("BERUANG_CORS_ORIGINS", "https://a.example,https://b.example")
        origins, regex = _get_cors_config(Settings())
        assert origins == ["https://a.example", "https://b.example"]
        assert regex is None
