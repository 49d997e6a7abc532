#!/usr/bin/env python3
from __future__ import annotations

import re
from dataclasses import dataclass, fields
from typing import Any

PREVIEW_MAX_CHARS = 280
TOOL_DESCRIPTION_MAX_CHARS = 500
ELLIPSIS = "…"

_WHITESPACE = re.compile(r"\s+")

# Record field name for each RequestInsights attribute.
FIELD_NAMES = {
    "model": "anthropic.model",
    "stream": "anthropic.stream",
    "max_tokens": "anthropic.max_tokens",
    "temperature": "anthropic.temperature",
    "user_id": "anthropic.user_id",
    "messages_count": "anthropic.messages.count",
    "prompt_preview": "prompt.preview",
    "system_count": "anthropic.system.count",
    "tools_count": "anthropic.tools.count",
    "tool_names": "anthropic.tools.names",
}


@dataclass(frozen=True)
class RequestInsights:
    """Semantic fields of a Messages API request; every field is optional."""
    model: Any = None
    stream: Any = None
    max_tokens: Any = None
    temperature: Any = None
    user_id: Any = None
    messages_count: int | None = None
    prompt_preview: str | None = None
    system_count: int | None = None
    tools_count: int | None = None
    tool_names: tuple[str, ...] | None = None

    def as_fields(self) -> dict[str, Any]:
        """Flat record fields, leaving out anything that was absent."""
        out: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            out[FIELD_NAMES[item.name]] = list(value) if isinstance(value, tuple) else value
        return out


def truncate(value: str, max_chars: int = PREVIEW_MAX_CHARS) -> str:
    if len(value) <= max_chars:
        return value
    return f"{value[:max_chars]}{ELLIPSIS}"


def _first_user_text(messages: list) -> str | None:
    first_user = next(
        (m for m in messages if isinstance(m, dict) and m.get("role") == "user"),
        None,
    )
    if first_user is None or not isinstance(first_user.get("content"), list):
        return None
    first_text = next(
        (c for c in first_user["content"] if isinstance(c, dict) and c.get("type") == "text"),
        None,
    )
    if first_text is None or not isinstance(first_text.get("text"), str):
        return None
    return first_text["text"]


def extract_request_insights(parsed: Any) -> RequestInsights:
    """Derive request insights from a parsed JSON body; never raises."""
    if not isinstance(parsed, dict):
        return RequestInsights()

    values: dict[str, Any] = {
        "model": parsed.get("model"),
        "stream": parsed.get("stream"),
        "max_tokens": parsed.get("max_tokens"),
        "temperature": parsed.get("temperature"),
    }

    metadata = parsed.get("metadata")
    if isinstance(metadata, dict):
        values["user_id"] = metadata.get("user_id")

    messages = parsed.get("messages")
    if isinstance(messages, list):
        values["messages_count"] = len(messages)
        text = _first_user_text(messages)
        if text is not None:
            values["prompt_preview"] = truncate(_WHITESPACE.sub(" ", text))

    system = parsed.get("system")
    if isinstance(system, list):
        values["system_count"] = len(system)

    tools = parsed.get("tools")
    if isinstance(tools, list):
        values["tools_count"] = len(tools)
        values["tool_names"] = tuple(
            tool["name"] for tool in tools if isinstance(tool, dict) and isinstance(tool.get("name"), str)
        )

    return RequestInsights(**values)


def tool_records(parsed: Any) -> list[dict[str, Any]]:
    """Per-tool detail fields for every mapping-typed entry in ``tools``."""
    if not isinstance(parsed, dict) or not isinstance(parsed.get("tools"), list):
        return []

    records = []
    for index, tool in enumerate(parsed["tools"]):
        if not isinstance(tool, dict):
            continue
        name = tool.get("name")
        description = tool.get("description")
        records.append(
            {
                "tool.index": index,
                "tool.name": name if isinstance(name, str) else None,
                "tool.description": (
                    truncate(description, TOOL_DESCRIPTION_MAX_CHARS) if isinstance(description, str) else None
                ),
                "tool.input_schema": tool.get("input_schema"),
            }
        )
    return records
