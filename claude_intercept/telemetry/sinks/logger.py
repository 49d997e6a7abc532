#!/usr/bin/env python3
from __future__ import annotations

import json
import logging
from typing import Any, Iterable

from ...utils import get_logger
from ..config import TelemetrySink
from ..events import PROXY_REQUEST, PROXY_STARTED, REQUEST_ROLLUP

DEFAULT_ACTIONS = frozenset({PROXY_STARTED, REQUEST_ROLLUP, PROXY_REQUEST})


class LoggerSink(TelemetrySink):
    """Writes selected records to a logger as compact JSON lines.

    Records carrying ``"log.level": "error"`` are logged at ERROR, the rest at INFO.
    """

    def __init__(self, name: str = "claude_intercept.telemetry", actions: Iterable[str] | None = DEFAULT_ACTIONS):
        self.logger = get_logger(name)
        self.actions = frozenset(actions) if actions is not None else None

    def emit(self, event: dict[str, Any]) -> None:
        if self.actions is not None and event.get("event.action") not in self.actions:
            return
        level = logging.ERROR if event.get("log.level") == "error" else logging.INFO
        try:
            serialized = json.dumps(event, separators=(",", ":"), default=str)
        except (TypeError, ValueError) as e:
            self.logger.log(level, f"Failed to serialize event: {event}; error: {e}")
            return
        self.logger.log(level, serialized)
