#!/usr/bin/env python3
"""
Incremental Server-Sent-Events decoding for inspected response streams.
"""

from __future__ import annotations

import codecs
import json
import re
from dataclasses import dataclass, field
from typing import Any

FRAME_SEPARATOR = re.compile(r"\r?\n\r?\n")
LINE_SEPARATOR = re.compile(r"\r?\n")

DEFAULT_EVENT = "message"
USAGE_EVENT = "message_delta"


@dataclass(frozen=True)
class SSEFrame:
    """One decoded event frame."""
    sequence: int
    event: str = DEFAULT_EVENT
    id: str | None = None
    data: str = ""
    raw: str = ""


@dataclass(frozen=True)
class SSESummary:
    """Totals for one fully consumed stream."""
    event_count: int
    stream_bytes: int
    input_tokens: int
    output_tokens: int
    type_counts: dict[str, int] = field(default_factory=dict)


def parse_frame(text: str, sequence: int) -> SSEFrame:
    """Parse the lines of one complete frame."""
    event = DEFAULT_EVENT
    event_id = None
    data_lines: list[str] = []
    for line in LINE_SEPARATOR.split(text):
        if line.startswith(":"):
            continue
        if line.startswith("event:"):
            event = line[6:].strip() or DEFAULT_EVENT
        elif line.startswith("id:"):
            event_id = line[3:].strip()
        elif line.startswith("data:"):
            data_lines.append(line[5:].lstrip())
    return SSEFrame(sequence=sequence, event=event, id=event_id, data="\n".join(data_lines), raw=text)


def _coerce_count(value: Any, previous: int) -> int:
    """Numeric coercion for usage counters; anything unusable keeps ``previous``."""
    if isinstance(value, bool) or value is None:
        return previous
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return previous
    else:
        return previous
    if number != number or number in (float("inf"), float("-inf")):
        return previous
    return int(number)


class SSEDecoder:
    """Split a byte stream into SSE frames and keep running stream statistics.

    Feed raw chunks as they arrive; each call returns the frames completed by
    that chunk. A partial frame still buffered when the stream ends is never
    emitted.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.sequence = 0
        self.stream_bytes = 0
        self.input_tokens = 0
        self.output_tokens = 0
        self.type_counts: dict[str, int] = {}

    def feed(self, chunk: bytes) -> list[SSEFrame]:
        self.stream_bytes += len(chunk)
        self._buffer += self._decoder.decode(chunk)

        pieces = FRAME_SEPARATOR.split(self._buffer)
        self._buffer = pieces.pop()

        frames = []
        for piece in pieces:
            if not piece.strip():
                continue
            self.sequence += 1
            frame = parse_frame(piece, self.sequence)
            self.type_counts[frame.event] = self.type_counts.get(frame.event, 0) + 1
            if frame.event == USAGE_EVENT:
                self._track_usage(frame.data)
            frames.append(frame)
        return frames

    def _track_usage(self, data: str) -> None:
        try:
            payload = json.loads(data)
        except ValueError:
            return
        if not isinstance(payload, dict):
            return
        usage = payload.get("usage")
        if not isinstance(usage, dict):
            return
        self.input_tokens = _coerce_count(usage.get("input_tokens"), self.input_tokens)
        self.output_tokens = _coerce_count(usage.get("output_tokens"), self.output_tokens)

    @property
    def pending(self) -> str:
        """Text of the incomplete trailing frame, if any."""
        return self._buffer

    def summary(self) -> SSESummary:
        return SSESummary(
            event_count=self.sequence,
            stream_bytes=self.stream_bytes,
            input_tokens=self.input_tokens,
            output_tokens=self.output_tokens,
            type_counts=dict(self.type_counts),
        )
