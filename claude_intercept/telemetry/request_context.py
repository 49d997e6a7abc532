#!/usr/bin/env python3
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from ..utils import now_iso

STREAMING_CHAT = "streaming-chat"
NON_STREAMING_CHAT = "non-streaming-chat"
OTHER = "other"

CHAT_PATH_SUFFIXES = ("/messages", "/chat/completions")


@dataclass(frozen=True)
class RequestContext:
    """Identity of one proxied request, shared read-only by every collaborator."""
    trace_id: str
    method: str
    path: str
    query: str = ""
    classification: str = OTHER
    started: float = field(default_factory=time.perf_counter)
    timestamp: str = field(default_factory=now_iso)
    # Undecoded request path; `path` is the percent-decoded form.
    raw_path: str | None = None

    @property
    def target(self) -> str:
        """Path and query to forward, with the client's escapes preserved."""
        path = self.raw_path if self.raw_path is not None else self.path
        return f"{path}?{self.query}" if self.query else path

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000


def classify_request(method: str, path: str, payload: Any) -> str:
    """Tag chat-style calls by streaming mode; everything else is ``other``."""
    if method.upper() != "POST" or not isinstance(payload, dict):
        return OTHER
    if not path.rstrip("/").endswith(CHAT_PATH_SUFFIXES):
        return OTHER
    return STREAMING_CHAT if payload.get("stream") is True else NON_STREAMING_CHAT


def new_request_context(
    method: str,
    path: str,
    query: str = "",
    payload: Any = None,
    started: float | None = None,
    timestamp: str | None = None,
    raw_path: str | None = None,
) -> RequestContext:
    """Assign a fresh trace id; ``started``/``timestamp`` default to now."""
    arrival: dict[str, Any] = {}
    if started is not None:
        arrival["started"] = started
    if timestamp is not None:
        arrival["timestamp"] = timestamp
    return RequestContext(
        trace_id=str(uuid.uuid4()),
        method=method,
        path=path,
        query=query,
        classification=classify_request(method, path, payload),
        raw_path=raw_path,
        **arrival,
    )
