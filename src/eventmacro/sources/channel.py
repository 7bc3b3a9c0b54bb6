"""
Bounded event channel shared by all sources.

Many producers, one consumer. Closing the channel is the stop signal for
every producer: a pending or later ``send`` raises :class:`ChannelClosed`.
"""

import asyncio
from typing import Any, Optional

import structlog


logger = structlog.get_logger()


class ChannelClosed(Exception):
    """Raised by ``send`` once the channel has been closed."""


class EventChannel:
    """Backpressured asyncio queue with an explicit close signal."""

    def __init__(self, capacity: int = 256):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity)
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, event: Any) -> None:
        """
        Enqueue an event, waiting while the channel is full.

        Raises:
            ChannelClosed: the channel was closed before or while waiting
        """
        if self.closed:
            raise ChannelClosed()

        try:
            self._queue.put_nowait(event)
            return
        except asyncio.QueueFull:
            pass

        put = asyncio.ensure_future(self._queue.put(event))
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not put.done():
                put.cancel()
            if not closed.done():
                closed.cancel()

        if put.cancelled() or not put.done():
            raise ChannelClosed()

    async def recv(self) -> Optional[Any]:
        """Next event, or ``None`` once the channel is closed and drained."""
        while True:
            try:
                return self._queue.get_nowait()
            except asyncio.QueueEmpty:
                pass
            if self.closed:
                return None

            get = asyncio.ensure_future(self._queue.get())
            closed = asyncio.ensure_future(self._closed.wait())
            try:
                await asyncio.wait({get, closed}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                if not closed.done():
                    closed.cancel()
                if not get.done():
                    get.cancel()

            if get.done() and not get.cancelled():
                return get.result()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def close(self) -> None:
        if not self.closed:
            self._closed.set()
            logger.debug("channel_closed", pending=self.qsize())
