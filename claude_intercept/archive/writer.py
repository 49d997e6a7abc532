#!/usr/bin/env python3
"""
On-disk archive of raw request/response artifacts, one file per artifact.
"""

from __future__ import annotations

import asyncio
import re
from pathlib import Path

from ..telemetry.config import ArchiveWriter
from ..telemetry.request_context import RequestContext
from ..utils import get_logger

REQUEST_META = "request.meta.json"
REQUEST_BODY = "request.body"
RESPONSE_META = "response.meta.json"
RESPONSE_BODY = "response.body"
RESPONSE_SSE = "response.sse.ndjson"
ERROR_TEXT = "error.txt"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def path_slug(path: str, max_chars: int = 80) -> str:
    slug = _UNSAFE.sub("_", path.strip("/")).strip("_")
    return slug[:max_chars] or "root"


class NullArchive(ArchiveWriter):
    """Archive that discards everything; used when archiving is disabled."""

    async def write(self, ctx: RequestContext, name: str, data: str | bytes) -> None:
        return None

    async def append(self, ctx: RequestContext, name: str, line: str) -> None:
        return None


class FileArchive(ArchiveWriter):
    """Writes artifacts under ``<root>/<classification>/<METHOD>_<path>_<trace id>.<name>``.

    Disk I/O runs in a worker thread. Failures are logged and swallowed so a
    full disk never affects proxying.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.logger = get_logger("claude_intercept.archive")

    def stem(self, ctx: RequestContext) -> Path:
        name = f"{ctx.method.upper()}_{path_slug(ctx.path)}_{ctx.trace_id}"
        return self.root / ctx.classification / name

    def artifact_path(self, ctx: RequestContext, name: str) -> Path:
        stem = self.stem(ctx)
        return stem.with_name(f"{stem.name}.{name}")

    async def write(self, ctx: RequestContext, name: str, data: str | bytes) -> None:
        await self._run(self._write, self.artifact_path(ctx, name), data, "wb" if isinstance(data, bytes) else "w")

    async def append(self, ctx: RequestContext, name: str, line: str) -> None:
        await self._run(self._write, self.artifact_path(ctx, name), f"{line}\n", "a")

    async def _run(self, func, path: Path, data: str | bytes, mode: str) -> None:
        try:
            await asyncio.to_thread(func, path, data, mode)
        except OSError as e:
            self.logger.warning(f"Archive write to {path} failed: {e}")

    @staticmethod
    def _write(path: Path, data: str | bytes, mode: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        if "b" in mode:
            with path.open(mode) as handle:
                handle.write(data)
        else:
            with path.open(mode, encoding="utf-8") as handle:
                handle.write(data)
