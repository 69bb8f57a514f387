"""Shared fan-in queue between handlers and the dispatch worker."""

from __future__ import annotations

import asyncio
import threading
from typing import AsyncIterator

_CLOSED = object()


class MessageChannel:
    """Unbounded FIFO with many writers and a single reader.

    ``send`` may be called from any thread. After ``close`` further sends are
    refused, while everything sent before it is still handed to the reader.
    """

    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._thread_id = threading.get_ident()
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, message: str) -> bool:
        with self._lock:
            if self._closed:
                return False
            if threading.get_ident() == self._thread_id:
                self._queue.put_nowait(message)
            else:
                self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
        return True

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            # Scheduled through the loop so it lands behind sends queued from other threads.
            self._loop.call_soon_threadsafe(self._queue.put_nowait, _CLOSED)

    async def receive(self) -> str | None:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def __aiter__(self) -> AsyncIterator[str]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[str]:
        while True:
            message = await self.receive()
            if message is None:
                return
            yield message
