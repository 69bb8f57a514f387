"""Contract shared by all shutdown signal transports."""

from __future__ import annotations

import threading
from typing import Protocol

from server.message_channel import MessageChannel


class HandlerStartError(RuntimeError):
    def __init__(self, handler_name: str, message: str) -> None:
        super().__init__(f"could not start handler {handler_name}: {message}")
        self.handler_name = handler_name


class Handler(Protocol):
    name: str

    async def start(self, outbound: MessageChannel) -> None:
        """Begin producing messages onto ``outbound``.

        May return once the transport is ready or block for the transport's
        whole lifetime; callers must not rely on either.
        """
        ...

    async def shutdown(self) -> None:
        """Best-effort, idempotent teardown. Never raises."""
        ...


class OneShotGuard:
    """Rejects a second ``start`` on the same handler instance."""

    def __init__(self, handler_name: str) -> None:
        self._handler_name = handler_name
        self._lock = threading.Lock()
        self._used = False

    @property
    def used(self) -> bool:
        return self._used

    def claim(self) -> None:
        with self._lock:
            if self._used:
                raise HandlerStartError(self._handler_name, "handler already started")
            self._used = True


def forward(outbound: MessageChannel | None, payload: bytes | bytearray | memoryview | str) -> bool:
    """Hand one inbound datum to the channel as text; False when it was dropped."""
    if outbound is None:
        return False
    if isinstance(payload, str):
        text = payload
    else:
        if isinstance(payload, memoryview):
            payload = payload.tobytes()
        text = bytes(payload).decode("utf-8", errors="replace")
    return outbound.send(text)
