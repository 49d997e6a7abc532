#!/usr/bin/env python3
from __future__ import annotations

from typing import Any

from ..config import TelemetrySink


class InMemorySink(TelemetrySink):
    """In-memory sink for test assertions."""

    def __init__(self):
        self.events: list[dict[str, Any]] = []

    def emit(self, event: dict[str, Any]) -> None:
        self.events.append(event)

    def clear(self) -> None:
        self.events.clear()

    def get_events(self) -> list[dict[str, Any]]:
        return self.events.copy()

    def actions(self) -> list[str]:
        """The ``event.action`` of each stored record, in emission order."""
        return [event.get("event.action") for event in self.events]

    def by_action(self, action: str) -> list[dict[str, Any]]:
        return [event for event in self.events if event.get("event.action") == action]
