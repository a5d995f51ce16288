from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Callable, List, Optional, Set

from testdaemon.schemas import EventType, StreamEvent

LOGGER = logging.getLogger("testdaemon.channels")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def encode_event(event: StreamEvent) -> str:
    return f"data: {json.dumps(event.payload(), ensure_ascii=False)}\n\n"


class EventChannel:
    """One server-sent-events stream.

    Events are queued by :meth:`send` and drained by :meth:`stream`, which the
    HTTP response iterates. Once the peer is gone every send is a silent no-op.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._closed = False
        self._disconnected = False
        self._close_callbacks: List[Callable[["EventChannel"], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def disconnected(self) -> bool:
        return self._disconnected

    def on_close(self, callback: Callable[["EventChannel"], None]) -> None:
        self._close_callbacks.append(callback)

    def send(self, event: StreamEvent) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(encode_event(event))
        return True

    def emit(self, event_type: EventType, **fields) -> bool:
        return self.send(StreamEvent(type=event_type, **fields))

    def send_threadsafe(self, event: StreamEvent) -> None:
        """Queue ``event`` from any thread, keeping the order of calls."""
        self._loop.call_soon_threadsafe(self.send, event)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        self._notify_closed()

    def _notify_closed(self) -> None:
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            callback(self)

    async def stream(self) -> AsyncIterator[str]:
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is None:
                    break
                yield chunk
        finally:
            if not self._closed:
                self._disconnected = True
                self._closed = True
                LOGGER.info("Event stream peer disconnected")
                self._notify_closed()


class ConnectionRegistry:
    """Open event channels, tracked for broadcast on shutdown."""

    def __init__(self) -> None:
        self._channels: Set[EventChannel] = set()

    def add(self, channel: EventChannel) -> None:
        self._channels.add(channel)
        channel.on_close(self.discard)

    def discard(self, channel: EventChannel) -> None:
        self._channels.discard(channel)

    def snapshot(self) -> List[EventChannel]:
        return list(self._channels)

    def clear(self) -> None:
        self._channels.clear()

    def __contains__(self, channel: object) -> bool:
        return channel in self._channels

    def __len__(self) -> int:
        return len(self._channels)
