#!/usr/bin/env python3
"""
Batched, ordered delivery of telemetry records to a remote exporter.
"""

from __future__ import annotations

import asyncio
from typing import Any

from ..utils import get_logger
from .config import BatchExporter, TelemetrySink


class ExportError(Exception):
    """Raised by exporters when the remote end rejects a batch."""

    def __init__(self, status_code: int, detail: str = ""):
        super().__init__(f"{status_code} {detail}".strip())
        self.status_code = status_code
        self.detail = detail

    @property
    def destination_missing(self) -> bool:
        return self.status_code == 404


class TelemetryQueue(TelemetrySink):
    """In-memory record buffer with timer- and size-driven batch export.

    All state lives on the event loop thread: ``enqueue`` is synchronous and
    never waits, and the in-flight flag is set before the first suspension
    point of ``export``, so at most one export runs at a time. A failed batch
    goes back to the front of the buffer and is retried right away; there is
    no backoff or retry cap.
    """

    def __init__(self, exporter: BatchExporter, batch_size: int = 100, flush_interval: float = 1.0):
        self.exporter = exporter
        self.batch_size = max(1, batch_size)
        self.flush_interval = flush_interval
        self.logger = get_logger("claude_intercept.telemetry.queue")
        self._buffer: list[dict[str, Any]] = []
        self._in_flight = False
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closing = False

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    def emit(self, event: dict[str, Any]) -> None:
        self.enqueue(event)

    def enqueue(self, record: dict[str, Any]) -> None:
        self._buffer.append(record)
        if len(self._buffer) >= self.batch_size:
            self._cancel_timer()
            self._schedule_export()
            return
        if self._timer is None and not self._closing:
            self._timer = asyncio.get_running_loop().call_later(self.flush_interval, self._on_timer)

    def _on_timer(self) -> None:
        self._timer = None
        self._schedule_export()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule_export(self) -> None:
        task = asyncio.get_running_loop().create_task(self.export())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def export(self) -> bool:
        """Send one batch from the front of the buffer; True on success."""
        if self._in_flight or not self._buffer:
            return False

        self._in_flight = True
        batch = self._buffer[: self.batch_size]
        del self._buffer[: self.batch_size]
        delivered = False
        try:
            await self.exporter.send(batch)
            delivered = True
        except ExportError as e:
            self.logger.error(f"Telemetry export failed: {e}")
            self._buffer[0:0] = batch
            if e.destination_missing:
                self.exporter.invalidate()
        except Exception as e:
            self.logger.error(f"Telemetry export failed: {e}")
            self._buffer[0:0] = batch
        finally:
            self._in_flight = False

        if self._buffer and not self._closing:
            self._schedule_export()
        return delivered

    async def wait_idle(self) -> None:
        """Wait until no export task is scheduled or running."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def drain(self) -> None:
        """Flush everything still buffered, stopping at the first failed batch."""
        self._closing = True
        self._cancel_timer()
        await self.wait_idle()
        while self._buffer:
            if not await self.export():
                self.logger.warning(f"Dropping {len(self._buffer)} telemetry records at shutdown")
                break
