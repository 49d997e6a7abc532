#!/usr/bin/env python3
"""
Body snapshots for telemetry records and archives.
"""

from __future__ import annotations

import base64
import json
from typing import Any

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def is_text_like(content_type: str) -> bool:
    content_type = content_type.lower()
    return (
        content_type.startswith("text/")
        or "json" in content_type
        or "xml" in content_type
        or "x-www-form-urlencoded" in content_type
        or "javascript" in content_type
    )


def decode_body(body: bytes | None, content_type: str, max_bytes: int = 65536) -> dict[str, str] | None:
    """Return a loggable body payload, clipped to ``max_bytes``.

    Text-like bodies become ``{"encoding": "utf8", "text": ...}``; anything
    else is base64-encoded. Empty bodies yield None.
    """
    if not body:
        return None

    clipped = body[:max_bytes]
    overflow = len(body) - len(clipped)
    if is_text_like(content_type):
        text = clipped.decode("utf-8", errors="replace")
        if overflow:
            text = f"{text}\n...[truncated {overflow} bytes]"
        return {"encoding": "utf8", "text": text}

    encoded = base64.b64encode(clipped).decode("ascii")
    if overflow:
        encoded = f"{encoded}...[truncated]"
    return {"encoding": "base64", "base64": encoded}


def parse_json_body(body: bytes | None, content_type: str) -> Any:
    """Parse a text-like body as JSON; None when absent, binary or malformed."""
    if not body or not is_text_like(content_type):
        return None
    try:
        return json.loads(body.decode("utf-8"))
    except ValueError:
        return None
