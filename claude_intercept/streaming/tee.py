#!/usr/bin/env python3
"""
Fan-out of one async byte stream into two independently consumed branches.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterable, AsyncIterator, Awaitable, Callable

CLIENT = 0
INSPECT = 1


class StreamTee:
    """One shared chunk buffer with a read cursor per branch.

    Whichever branch runs ahead triggers the next read from the source; the
    other branch later takes the chunk from the buffer. Chunks are released
    once every open branch has passed them, so only the slower branch pays
    for the lag and the source is never throttled on its behalf.

    Source reads run in a task owned by the tee and are awaited through
    ``asyncio.shield``: cancelling one consumer never cancels the read, and
    the chunk still lands in the buffer for the other branch. A branch stays
    open until it finishes iterating or ``close(index)`` is called, whether
    or not it was ever started.

    A source error is raised once in each branch, at the position where it
    occurred. ``on_close`` is awaited once after both branches are closed.
    """

    def __init__(
        self,
        source: AsyncIterable[bytes],
        on_close: Callable[[], Awaitable[None]] | None = None,
    ):
        self._source = source.__aiter__()
        self._on_close = on_close
        self._chunks: list[bytes] = []
        self._offset = 0
        self._cursors = [0, 0]
        self._open = [True, True]
        self._started = [False, False]
        self._done = False
        self._error: BaseException | None = None
        self._reader: asyncio.Task | None = None
        self._closed = False

    @property
    def buffered(self) -> int:
        """Number of chunks currently held for the slower branch."""
        return len(self._chunks)

    @property
    def closed(self) -> bool:
        return self._closed

    def branch(self, index: int) -> AsyncIterator[bytes]:
        if self._started[index]:
            raise RuntimeError(f"tee branch {index} already consumed")
        self._started[index] = True
        return self._iterate(index)

    def branches(self) -> tuple[AsyncIterator[bytes], AsyncIterator[bytes]]:
        return self.branch(CLIENT), self.branch(INSPECT)

    async def close(self, index: int) -> None:
        """Stop holding data for branch ``index``; safe to call repeatedly."""
        if not self._open[index]:
            return
        self._open[index] = False
        self._release_consumed()
        await self._maybe_close()

    async def _iterate(self, index: int) -> AsyncIterator[bytes]:
        try:
            while self._open[index]:
                position = self._cursors[index]
                end = self._offset + len(self._chunks)
                if position < end:
                    chunk = self._chunks[position - self._offset]
                    self._cursors[index] = position + 1
                    self._release_consumed()
                    yield chunk
                    continue
                if self._done:
                    if self._error is not None:
                        raise self._error
                    return
                await self._pull()
        finally:
            await self.close(index)

    async def _pull(self) -> None:
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_next())
        await asyncio.shield(self._reader)

    async def _read_next(self) -> None:
        try:
            chunk = await self._source.__anext__()
        except StopAsyncIteration:
            self._done = True
        except Exception as exc:
            self._error = exc
            self._done = True
        else:
            self._chunks.append(chunk)
        finally:
            self._reader = None

    def _release_consumed(self) -> None:
        active = [cursor for cursor, is_open in zip(self._cursors, self._open) if is_open]
        floor = min(active) if active else self._offset + len(self._chunks)
        drop = floor - self._offset
        if drop > 0:
            del self._chunks[:drop]
            self._offset = floor

    async def _maybe_close(self) -> None:
        if self._closed or any(self._open):
            return
        self._closed = True
        self._chunks.clear()
        reader = self._reader
        if reader is not None:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        if self._on_close is not None:
            await self._on_close()


def tee_stream(
    source: AsyncIterable[bytes],
    on_close: Callable[[], Awaitable[None]] | None = None,
) -> tuple[AsyncIterator[bytes], AsyncIterator[bytes]]:
    """Split ``source`` into a client-facing branch and an inspection branch."""
    return StreamTee(source, on_close).branches()
