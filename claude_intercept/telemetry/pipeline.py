#!/usr/bin/env python3
from __future__ import annotations

import uuid
from typing import Any, Sequence

from ..utils import get_logger, now_iso
from .config import TelemetrySink
from .events import EVENT_DATASET, SERVICE_NAME


class TelemetryPipeline:
    """Stamps every record with service identity and fans it out to all sinks."""

    def __init__(
        self,
        sinks: Sequence[TelemetrySink],
        session_id: str | None = None,
        service_version: str = "0.3.0",
    ):
        self.sinks = list(sinks)
        self.session_id = session_id or str(uuid.uuid4())
        self.service_version = service_version
        self.logger = get_logger("claude_intercept.telemetry.pipeline")

    def record(self, event: dict[str, Any]) -> dict[str, Any]:
        """Build the final record: common fields first, event fields after."""
        return {
            "@timestamp": now_iso(),
            "service.name": SERVICE_NAME,
            "service.version": self.service_version,
            "event.dataset": EVENT_DATASET,
            "session.id": self.session_id,
            **event,
        }

    def publish(self, event: dict[str, Any]) -> dict[str, Any]:
        """Emit the stamped record to every sink, isolating sink failures."""
        record = self.record(event)
        for sink in self.sinks:
            try:
                sink.emit(record)
            except Exception as e:
                self.logger.warning(f"Telemetry sink {sink.__class__.__name__} failed: {e}")
        return record
