"""Beruang REST API.

Provides:
- POST /api/v1/chat/stream  — SSE chat stream
- POST /api/v1/chat         — Non-streaming fallback
- GET  /api/v1/route        — Routing decision for a message
- GET  /api/v1/health       — Health check

Start via CLI:
    beruang serve
    beruang serve --port 3000
"""

from beruang.api.server import create_app, run_http_server

__all__ = ["create_app", "run_http_server"]
