"""Beruang REST API Server (FastAPI application).

Architecture:
    - One BeruangServer (shared components) per process, on ``app.state``
    - The intent model loads in a worker thread during startup; until it
      is ready every message routes to the remote model
    - Chat endpoints live in :mod:`beruang.api.chat`

Endpoints:
    POST /api/v1/chat/stream       — SSE chat stream
    POST /api/v1/chat              — Non-streaming fallback
    GET  /api/v1/route             — Routing decision for a message
    GET  /api/v1/health            — Health check

Usage:
    from beruang.api.server import create_app, run_http_server

    app = create_app(settings)
    run_http_server(settings, port=3000)
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from beruang import __version__
from beruang.api.models import ComponentHealth, ComponentStatus, ErrorResponse, HealthResponse
from beruang.config import Settings
from beruang.server import MODEL_FAILED, MODEL_LOADED, MODEL_LOADING, BeruangServer

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    beruang_server: Optional[BeruangServer] = None,
) -> FastAPI:
    """Create the FastAPI application.

    Parameters
    ----------
    settings:
        Process settings. Loaded from YAML/env when None.
    beruang_server:
        Pre-built components (tests inject fakes here). Built from
        ``settings`` at startup when None.

    Returns
    -------
    FastAPI
        Configured application ready to serve.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        # Startup
        if app.state.beruang_server is None:
            app.state.beruang_server = BeruangServer.from_settings(
                app.state.settings or Settings.load()
            )
        server: BeruangServer = app.state.beruang_server

        loader: Optional[asyncio.Task] = None
        if server.classifier is not None and not server.classifier.is_ready:
            loader = asyncio.create_task(asyncio.to_thread(server.load_model))
        app.state.model_loader = loader

        logger.info(
            "Beruang HTTP API started: intent model=%s, remote=%s, docs=/docs",
            server.model_status,
            "configured" if server.llm.configured else "missing_api_key",
        )

        yield

        # Shutdown
        if loader is not None and not loader.done():
            loader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await loader
        await server.aclose()
        logger.info("Beruang HTTP API stopped")

    app = FastAPI(
        title="Beruang API",
        description="Beruang finance assistant with hybrid local/remote chat routing.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── CORS ────────────────────────────────────────────────────────
    origins, origin_regex = _get_cors_config(settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_origin_regex=origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── App state ───────────────────────────────────────────────────
    app.state.settings = settings
    app.state.beruang_server = beruang_server
    app.state.model_loader = None
    app.state.start_time = time.time()

    # ── Exception handler ───────────────────────────────────────────
    @app.exception_handler(Exception)
    async def _global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled API error: %s", exc)
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                code="internal_error",
            ).model_dump(),
        )

    # ── Register routers ────────────────────────────────────────────
    from beruang.api.chat import router as chat_router

    app.include_router(chat_router)

    @app.get(
        "/api/v1/health",
        response_model=HealthResponse,
        summary="Health check",
        description="Returns service health status and component diagnostics.",
        tags=["system"],
    )
    async def health(request: Request) -> HealthResponse:
        """Health endpoint."""
        uptime = time.time() - request.app.state.start_time
        components = _check_components(request.app.state.beruang_server)

        statuses = [c.status for c in components]
        overall = "ok" if all(s == ComponentStatus.OK for s in statuses) else "degraded"

        return HealthResponse(
            status=overall,
            version=__version__,
            uptime_seconds=round(uptime, 2),
            components=components,
        )

    return app


# ─────────────────────────────────────────────────────────────
# Helper functions
# ─────────────────────────────────────────────────────────────

def _get_cors_config(settings: Optional[Settings] = None) -> tuple[list[str], str | None]:
    """Get CORS config: (explicit origins, optional origin regex).

    Starlette CORSMiddleware does NOT support glob patterns like
    ``http://localhost:*``. We use:
    - ``allow_origins`` for exact matches (explicit ports)
    - ``allow_origin_regex`` for localhost/127.0.0.1 on any port

    Env:
        BERUANG_CORS_ORIGINS  – comma-separated explicit origins (overrides defaults)
    """
    configured = list(settings.server.cors_origins) if settings is not None else []
    origins_str = os.getenv("BERUANG_CORS_ORIGINS", "").strip()
    if origins_str:
        configured = [o.strip() for o in origins_str.split(",") if o.strip()]
    if configured:
        return configured, None

    # Default (dev): explicit common ports + regex for any localhost port
    explicit = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://localhost:8081",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8081",
    ]
    regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"
    return explicit, regex


def _check_components(server: Optional[BeruangServer]) -> list[ComponentHealth]:
    """Check health of all components."""
    if server is None:
        return [ComponentHealth(name="service", status=ComponentStatus.DOWN, detail="not started")]

    components: list[ComponentHealth] = []

    # Intent model
    model_status = server.model_status
    if model_status == MODEL_LOADED:
        status = ComponentStatus.OK
    elif model_status in (MODEL_LOADING, MODEL_FAILED):
        status = ComponentStatus.DEGRADED
    else:
        status = ComponentStatus.DOWN
    detail = model_status
    if model_status == MODEL_FAILED and server.model_error:
        detail = f"{model_status}: {server.model_error}"
    components.append(ComponentHealth(name="intent_model", status=status, detail=detail))

    # Remote LLM
    if server.llm.configured:
        components.append(
            ComponentHealth(name="remote_llm", status=ComponentStatus.OK, detail="configured")
        )
    else:
        components.append(
            ComponentHealth(name="remote_llm", status=ComponentStatus.DOWN, detail="missing_api_key")
        )

    # Web search
    if server.places is not None and server.places.configured:
        components.append(
            ComponentHealth(name="web_search", status=ComponentStatus.OK, detail="configured")
        )
    else:
        components.append(
            ComponentHealth(name="web_search", status=ComponentStatus.DEGRADED, detail="not_configured")
        )

    # Knowledge base
    stats = server.knowledge.stats()
    components.append(
        ComponentHealth(
            name="knowledge",
            status=ComponentStatus.OK if stats["intents"] else ComponentStatus.DEGRADED,
            detail=", ".join(f"{k}={v}" for k, v in stats.items()),
        )
    )

    return components


def run_http_server(
    settings: Optional[Settings] = None,
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    log_level: Optional[str] = None,
) -> None:
    """Start the Beruang HTTP server (blocking).

    This is the main entry point for ``beruang serve``.
    """
    import uvicorn

    settings = settings or Settings.load()
    host = host or settings.server.host
    port = port or settings.server.port
    log_level = log_level or settings.server.log_level

    app = create_app(settings)

    logger.info("Beruang HTTP API starting on http://%s:%d (docs: /docs)", host, port)

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=log_level,
        access_log=True,
    )
