"""
Subscriber sinks for the log broadcaster.

A sink is anything with ``async write(text)``. Returning False or raising
tells the broadcaster the viewer is gone. ``close()`` is optional.

- QueueSink: bounded asyncio.Queue drained by the SSE endpoint
- WebSocketSink: writes straight to a FastAPI WebSocket
"""

import asyncio
import logging
from typing import Optional, Protocol

from fastapi import WebSocket

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000

_CLOSED = object()


class SinkClosedError(Exception):
    """Raised when writing to or subscribing a sink that is already gone."""
    pass


class LogSink(Protocol):
    async def write(self, text: str) -> Optional[bool]:
        ...


class QueueSink:
    """
    Buffers messages for a consumer running in another task.

    A full queue means the consumer stopped reading; write() then reports
    failure so the broadcaster drops the sink instead of blocking the operation.
    """

    def __init__(self, maxsize: int = DEFAULT_QUEUE_SIZE):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def write(self, text: str) -> bool:
        if self.closed:
            return False
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            return False
        return True

    async def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Next message, or None once the sink is closed.

        Raises:
            asyncio.TimeoutError: Nothing arrived within timeout
        """
        # Closed while full: the sentinel never made it in, so stop once drained
        if self.closed and self._queue.empty():
            return None
        if timeout is None:
            item = await self._queue.get()
        else:
            item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
        if item is _CLOSED:
            self.closed = True
            return None
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        # Wake the consumer; if the queue is full get() returns None once it drains
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    def qsize(self) -> int:
        return self._queue.qsize()


class WebSocketSink:
    """Sink that forwards messages to a connected WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.closed = False

    async def write(self, text: str) -> bool:
        if self.closed:
            return False
        await self.websocket.send_text(text)
        return True

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.websocket.close()
        except Exception as e:
            logger.debug(f"WebSocket already closed: {e}")
