#!/usr/bin/env python3
"""
Per-request forwarding to the upstream API with detached traffic inspection.

A request moves through ``received -> forwarding -> streaming-response ->
completed``, or ends in ``failed`` when the upstream call itself cannot be
made. The client-facing body is handed to Starlette as soon as upstream
headers arrive; decoding, archiving and telemetry for the response happen on
a separate task reading the other half of a tee.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, AsyncIterator, Iterable
from urllib.parse import urlsplit

import httpx
from fastapi import Request, Response
from fastapi.responses import PlainTextResponse, StreamingResponse

from .archive.writer import (
    ERROR_TEXT,
    REQUEST_BODY,
    REQUEST_META,
    RESPONSE_BODY,
    RESPONSE_META,
    RESPONSE_SSE,
    NullArchive,
)
from .streaming.sse import SSEDecoder
from .streaming.tee import CLIENT, INSPECT, StreamTee
from .telemetry import events
from .telemetry.config import ArchiveWriter
from .telemetry.insights import extract_request_insights, tool_records
from .telemetry.payload import DEFAULT_CONTENT_TYPE, decode_body, parse_json_body
from .telemetry.pipeline import TelemetryPipeline
from .telemetry.redaction import headers_to_dict
from .telemetry.request_context import RequestContext, new_request_context
from .utils import get_logger, now_iso

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-connection",
        "proxy-authenticate",
        "te",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)
# Replaced on the way upstream.
OVERRIDDEN_REQUEST_HEADERS = frozenset({"host", "x-request-id", "accept-encoding", "content-length"})
NO_BODY_STATUSES = frozenset({204, 205, 304})

BAD_GATEWAY_BODY = "Bad gateway"


def _declared_length(headers: httpx.Headers) -> int:
    try:
        return int(headers.get("content-length") or 0)
    except ValueError:
        return 0


def _relay_headers(raw: Iterable[tuple[bytes, bytes]]) -> list[tuple[bytes, bytes]]:
    # ASGI header names are lowercase.
    return [(name.lower(), value) for name, value in raw if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS]


async def _replay(content: bytes) -> AsyncIterator[bytes]:
    yield content


def request_target(request: Request) -> tuple[str, str, str]:
    """Return `(path, raw_path, query)` for an incoming request.

    `path` is percent-decoded; `raw_path` and `query` are exactly what the
    client sent.
    """
    path = request.scope.get("path") or request.url.path
    raw_path = request.scope.get("raw_path")
    return (
        path,
        raw_path.decode("latin-1") if raw_path else path,
        request.scope.get("query_string", b"").decode("latin-1"),
    )


class RelayResponse(StreamingResponse):
    """Streams the client branch of a tee and releases it once the exchange ends.

    The branch is closed even when Starlette never starts iterating it (for
    example after an early client disconnect), so the tee can free its buffer
    and close the upstream response.
    """

    def __init__(self, tee: StreamTee, status_code: int, raw_headers: list[tuple[bytes, bytes]]):
        super().__init__(tee.branch(CLIENT), status_code=status_code)
        self.raw_headers = raw_headers
        self.tee = tee

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.tee.close(CLIENT)


class RequestPipeline:
    """Forwards requests to one upstream and turns the traffic into telemetry."""

    def __init__(
        self,
        upstream_base: str,
        client: httpx.AsyncClient,
        telemetry: TelemetryPipeline,
        archive: ArchiveWriter | None = None,
        body_log_max_bytes: int = 65536,
    ):
        self.upstream_base = upstream_base.rstrip("/")
        self.client = client
        self.telemetry = telemetry
        self.archive = archive or NullArchive()
        self.body_log_max_bytes = body_log_max_bytes
        self.logger = get_logger("claude_intercept.proxy")
        self._tasks: set[asyncio.Task] = set()

    def upstream_url(self, ctx: RequestContext) -> str:
        return f"{self.upstream_base}{ctx.target}"

    def forward_headers(self, raw: Iterable[tuple[bytes, bytes]], url: str, ctx: RequestContext) -> list[tuple[str, str]]:
        headers = []
        for name, value in raw:
            key = name.decode("latin-1")
            lowered = key.lower()
            if lowered in HOP_BY_HOP_HEADERS or lowered in OVERRIDDEN_REQUEST_HEADERS:
                continue
            headers.append((key, value.decode("latin-1")))
        headers.append(("host", urlsplit(url).netloc))
        headers.append(("x-request-id", ctx.trace_id))
        headers.append(("accept-encoding", "identity"))
        return headers

    async def handle(self, request: Request) -> Response:
        started = time.perf_counter()
        timestamp = now_iso()
        body = await request.body()
        content_type = request.headers.get("content-type", DEFAULT_CONTENT_TYPE)
        parsed = parse_json_body(body, content_type)
        path, raw_path, query = request_target(request)
        ctx = new_request_context(
            request.method,
            path,
            query,
            parsed,
            started=started,
            timestamp=timestamp,
            raw_path=raw_path,
        )
        url = self.upstream_url(ctx)
        insights = extract_request_insights(parsed).as_fields()

        request_meta = {
            "trace.id": ctx.trace_id,
            "event.action": events.REQUEST_RECEIVED,
            "event.kind": "event",
            "request.classification": ctx.classification,
            "http.request.method": ctx.method,
            "url.full": url,
            "url.path": ctx.path,
            "http.request.headers": headers_to_dict(request.headers.items()),
            "http.request.body.bytes": len(body),
            "http.request.body.content_type": content_type,
            "http.request.body": decode_body(body, content_type, self.body_log_max_bytes),
            **insights,
        }
        self.telemetry.publish({"log.level": "info", **request_meta})
        await self.archive.write(ctx, REQUEST_BODY, body)
        await self.archive.write(ctx, REQUEST_META, json.dumps(request_meta, indent=2, default=str))

        for tool in tool_records(parsed):
            self.telemetry.publish(
                {
                    "log.level": "info",
                    "trace.id": ctx.trace_id,
                    "event.action": events.REQUEST_TOOL,
                    **tool,
                    "url.path": ctx.path,
                    "anthropic.model": insights.get("anthropic.model"),
                    "anthropic.user_id": insights.get("anthropic.user_id"),
                }
            )

        upstream_request = self.client.build_request(
            ctx.method,
            url,
            headers=self.forward_headers(request.headers.raw, url, ctx),
            content=body,
        )
        try:
            upstream = await self.client.send(upstream_request, stream=True, follow_redirects=False)
        except httpx.RequestError as e:
            return await self._fail(ctx, url, e)

        return await self._relay(ctx, url, upstream, len(body), insights)

    async def _relay(
        self,
        ctx: RequestContext,
        url: str,
        upstream: httpx.Response,
        request_bytes: int,
        insights: dict[str, Any],
    ) -> Response:
        duration_ms = ctx.elapsed_ms()
        content_type = upstream.headers.get("content-type", DEFAULT_CONTENT_TYPE)
        response_bytes = _declared_length(upstream.headers)
        outcome = "success" if upstream.is_success else "failure"

        response_meta = {
            "trace.id": ctx.trace_id,
            "event.action": events.RESPONSE_HEADERS,
            "event.kind": "event",
            "event.outcome": outcome,
            **events.latency_fields(duration_ms),
            "http.response.status_code": upstream.status_code,
            "http.response.headers": headers_to_dict(upstream.headers.multi_items()),
            "http.response.content_type": content_type,
            "http.request.body.bytes": request_bytes,
            "http.response.body.bytes": response_bytes,
            "network.bytes": request_bytes + response_bytes,
        }
        rollup = {
            "trace.id": ctx.trace_id,
            "event.action": events.REQUEST_ROLLUP,
            "event.outcome": outcome,
            "request.classification": ctx.classification,
            "latency.ms": round(duration_ms),
            "latency.bucket": events.latency_bucket(duration_ms),
            "http.request.method": ctx.method,
            "url.full": url,
            "url.path": ctx.path,
            "http.response.status_code": upstream.status_code,
            "http.request.body.bytes": request_bytes,
            "http.response.body.bytes": response_bytes,
            "network.bytes": request_bytes + response_bytes,
            **insights,
        }

        self.telemetry.publish({"log.level": "info", **response_meta})
        await self.archive.write(ctx, RESPONSE_META, json.dumps(response_meta, indent=2, default=str))

        headers = _relay_headers(upstream.headers.raw)
        if ctx.method.upper() == "HEAD" or upstream.status_code < 200 or upstream.status_code in NO_BODY_STATUSES:
            await upstream.aclose()
            self.telemetry.publish({"log.level": "info", **rollup})
            response = Response(status_code=upstream.status_code)
            response.raw_headers = headers
            return response

        # Transports that hand back an already-buffered body cannot be re-streamed.
        source = _replay(upstream.content) if upstream.is_stream_consumed else upstream.aiter_raw()
        tee = StreamTee(source, on_close=upstream.aclose)
        is_event_stream = "text/event-stream" in content_type.lower()
        self._spawn(self._inspect(ctx, url, tee.branch(INSPECT), is_event_stream, content_type, rollup))

        return RelayResponse(tee, status_code=upstream.status_code, raw_headers=headers)

    async def _fail(self, ctx: RequestContext, url: str, error: Exception) -> Response:
        duration_ms = ctx.elapsed_ms()
        error_text = str(error) or type(error).__name__
        self.logger.error(f"Upstream request {ctx.method} {url} failed: {error_text}")

        self.telemetry.publish(
            {
                "log.level": "error",
                "trace.id": ctx.trace_id,
                "event.action": events.PROXY_REQUEST,
                "event.kind": "event",
                "event.outcome": "failure",
                **events.latency_fields(duration_ms),
                "http.request.method": ctx.method,
                "url.full": url,
                "error": error_text,
                "error.type": type(error).__name__,
            }
        )
        self.telemetry.publish(
            {
                "log.level": "error",
                "trace.id": ctx.trace_id,
                "event.action": events.REQUEST_ROLLUP,
                "event.outcome": "failure",
                "request.classification": ctx.classification,
                "latency.ms": round(duration_ms),
                "latency.bucket": events.latency_bucket(duration_ms),
                "http.request.method": ctx.method,
                "url.full": url,
                "url.path": ctx.path,
                "error": error_text,
            }
        )
        await self.archive.write(ctx, ERROR_TEXT, error_text)
        return PlainTextResponse(BAD_GATEWAY_BODY, status_code=502)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_idle(self) -> None:
        """Wait for every detached inspection task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _inspect(
        self,
        ctx: RequestContext,
        url: str,
        branch: AsyncIterator[bytes],
        is_event_stream: bool,
        content_type: str,
        rollup: dict[str, Any],
    ) -> None:
        totals: dict[str, Any] = {}
        try:
            if is_event_stream:
                totals = await self._capture_sse(ctx, url, branch)
            else:
                totals = await self._capture_body(ctx, branch, content_type)
        except Exception as e:
            self.logger.warning(f"Inspection of {ctx.trace_id} failed: {e}")
            totals = {"inspection.error": str(e) or type(e).__name__}
        finally:
            await branch.aclose()

        if "http.response.body.bytes" in totals:
            totals["network.bytes"] = rollup["http.request.body.bytes"] + totals["http.response.body.bytes"]
        self.telemetry.publish({"log.level": "info", **rollup, **totals})

    async def _capture_body(self, ctx: RequestContext, branch: AsyncIterator[bytes], content_type: str) -> dict[str, Any]:
        chunks = [chunk async for chunk in branch]
        data = b"".join(chunks)
        await self.archive.write(ctx, RESPONSE_BODY, data)
        self.telemetry.publish(
            {
                "log.level": "info",
                "trace.id": ctx.trace_id,
                "event.action": events.RESPONSE_BODY,
                "http.response.body.bytes": len(data),
                "http.response.body.content_type": content_type,
                "http.response.body": decode_body(data, content_type, self.body_log_max_bytes),
            }
        )
        return {"http.response.body.bytes": len(data)}

    async def _capture_sse(self, ctx: RequestContext, url: str, branch: AsyncIterator[bytes]) -> dict[str, Any]:
        decoder = SSEDecoder()
        async for chunk in branch:
            for frame in decoder.feed(chunk):
                sse_event = {
                    "trace.id": ctx.trace_id,
                    "event.action": events.SSE_EVENT,
                    "event.sequence": frame.sequence,
                    "url.full": url,
                    "sse.event": frame.event,
                    "sse.data": frame.data,
                    "sse.frame": frame.raw,
                    "sse.data.bytes": len(frame.data.encode("utf-8")),
                }
                if frame.id is not None:
                    sse_event["sse.id"] = frame.id
                self.telemetry.publish({"log.level": "info", **sse_event})
                await self.archive.append(ctx, RESPONSE_SSE, json.dumps(sse_event))

        summary = decoder.summary()
        stream_fields = {
            "sse.event_count": summary.event_count,
            "sse.stream.bytes": summary.stream_bytes,
            "usage.input_tokens": summary.input_tokens,
            "usage.output_tokens": summary.output_tokens,
            "sse.type_counts": summary.type_counts,
        }
        self.telemetry.publish(
            {"log.level": "info", "trace.id": ctx.trace_id, "event.action": events.SSE_SUMMARY, **stream_fields}
        )
        return {**stream_fields, "http.response.body.bytes": summary.stream_bytes}
