#!/usr/bin/env python3
from __future__ import annotations

from typing import Iterable, Mapping

REDACTED = "[REDACTED]"

SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "api-key",
        "x-api-key",
        "cookie",
        "set-cookie",
    }
)


def redact_header_value(name: str, value: str) -> str:
    """Return ``value`` unless ``name`` is a credential-bearing header."""
    if name.lower() in SENSITIVE_HEADERS:
        return REDACTED
    return value


def headers_to_dict(headers: Mapping[str, str] | Iterable[tuple[str, str]]) -> dict[str, str]:
    """Snapshot a header collection with sensitive values masked.

    Repeated headers are joined with ``, `` the way fetch-style header maps
    present them; names are lowercased.
    """
    items = headers.items() if hasattr(headers, "items") else headers
    out: dict[str, str] = {}
    for name, value in items:
        key = name.lower()
        masked = redact_header_value(key, value)
        out[key] = f"{out[key]}, {masked}" if key in out else masked
    return out
