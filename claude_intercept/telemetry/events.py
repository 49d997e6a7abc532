#!/usr/bin/env python3
from __future__ import annotations

SERVICE_NAME = "claude-intercept"
EVENT_DATASET = "claude.proxy"

# event.action values
PROXY_STARTED = "proxy_started"
REQUEST_RECEIVED = "request_received"
REQUEST_TOOL = "request_tool"
RESPONSE_HEADERS = "response_headers"
RESPONSE_BODY = "response_body"
SSE_EVENT = "sse_event"
SSE_SUMMARY = "sse_summary"
REQUEST_ROLLUP = "request_rollup"
PROXY_REQUEST = "proxy_request"

LATENCY_BANDS = (
    (50, "le_50ms"),
    (100, "le_100ms"),
    (250, "le_250ms"),
    (500, "le_500ms"),
    (1000, "le_1s"),
    (3000, "le_3s"),
    (10000, "le_10s"),
)


def latency_bucket(duration_ms: float) -> str:
    """Map a latency to its band; each upper bound is inclusive."""
    for limit, label in LATENCY_BANDS:
        if duration_ms <= limit:
            return label
    return "gt_10s"


def latency_fields(duration_ms: float) -> dict[str, object]:
    return {
        "event.duration": round(duration_ms * 1_000_000),
        "latency.ms": round(duration_ms),
        "latency.bucket": latency_bucket(duration_ms),
    }
