#!/usr/bin/env python3
"""
ASGI application and server startup for the claude-intercept proxy.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import Sequence

import httpx
from fastapi import FastAPI, Request, Response

from .archive.writer import FileArchive, NullArchive
from .config.config import ProxySettings
from .forwarding import RequestPipeline
from .telemetry import events
from .telemetry.config import TelemetrySink
from .telemetry.pipeline import TelemetryPipeline
from .telemetry.queue import TelemetryQueue
from .telemetry.sinks.axiom import build_axiom_sink
from .telemetry.sinks.logger import LoggerSink

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
STARTED_AT = time.time()


def build_sinks(settings: ProxySettings, export_client: httpx.AsyncClient) -> list[TelemetrySink]:
    sinks: list[TelemetrySink] = []
    if settings.telemetry_log:
        sinks.append(LoggerSink())
    axiom = build_axiom_sink(settings, export_client)
    if axiom is not None:
        sinks.append(axiom)
    return sinks


def create_app(
    settings: ProxySettings,
    client: httpx.AsyncClient | None = None,
    sinks: Sequence[TelemetrySink] | None = None,
    export_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    """Build the proxy app; every path and method is forwarded upstream."""
    # No timeouts beyond what the transport itself enforces.
    upstream_client = client or httpx.AsyncClient(timeout=None, follow_redirects=False)
    if sinks is None:
        export_client = export_client or httpx.AsyncClient(timeout=None)
        sinks = build_sinks(settings, export_client)

    telemetry = TelemetryPipeline(sinks)
    archive = FileArchive(settings.archive_dir) if settings.archive_enabled else NullArchive()
    pipeline = RequestPipeline(
        settings.upstream_base,
        upstream_client,
        telemetry,
        archive=archive,
        body_log_max_bytes=settings.body_log_max_bytes,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        telemetry.publish(
            {
                "log.level": "info",
                "event.action": events.PROXY_STARTED,
                "process.uptime_ms": round((time.time() - STARTED_AT) * 1000),
                "listen": f"http://{settings.host}:{settings.port}",
                "upstream": settings.upstream_base,
                "archive.enabled": settings.archive_enabled,
                "archive.dir": str(settings.archive_dir),
                "axiom.enabled": settings.axiom_enabled,
            }
        )
        yield
        await pipeline.wait_idle()
        for sink in telemetry.sinks:
            if isinstance(sink, TelemetryQueue):
                await sink.drain()
        await upstream_client.aclose()
        if export_client is not None:
            await export_client.aclose()

    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.pipeline = pipeline
    app.state.telemetry = telemetry

    @app.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
    async def forward(request: Request) -> Response:
        return await pipeline.handle(request)

    return app


def start_proxy(settings: ProxySettings, log_level: str = "info") -> None:
    """Serve the proxy with uvicorn until interrupted."""
    import uvicorn

    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=log_level.lower())
