#!/usr/bin/env python3
from __future__ import annotations

from typing import Any, Protocol, Sequence


class TelemetrySink(Protocol):
    def emit(self, event: dict[str, Any]) -> None: ...


class BatchExporter(Protocol):
    async def send(self, batch: Sequence[dict[str, Any]]) -> None: ...

    def invalidate(self) -> None: ...


class ArchiveWriter(Protocol):
    async def write(self, ctx: Any, name: str, data: str | bytes) -> None: ...

    async def append(self, ctx: Any, name: str, line: str) -> None: ...
