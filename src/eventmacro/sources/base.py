"""Event source base class."""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Optional

import structlog

from .channel import EventChannel


logger = structlog.get_logger()


MIN_POLL_MS = 10


class PollTimer:
    """Fixed-rate ticker: the next deadline advances by one interval per tick,
    so time spent handling a tick does not push later ticks back."""

    def __init__(self, poll_ms: int):
        self.interval = max(poll_ms, MIN_POLL_MS) / 1000
        self._next: Optional[float] = None

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        if self._next is None:
            self._next = now
        if now < self._next:
            await asyncio.sleep(self._next - now)
        self._next += self.interval


def parse_event(text: str) -> Any:
    """
    Parse one JSON event payload.

    Raises:
        ValueError: payload is not valid JSON (json.JSONDecodeError is a ValueError)
    """
    return json.loads(text)


class EventSource(ABC):
    """
    Producer of JSON events.

    A source never stops on one malformed input: it logs and moves on. It
    ends when the channel is closed, at natural end of input, or on an
    unrecoverable resource failure. Every dispatch goes through
    ``channel.send`` and so waits while the consumer is behind.
    """

    name: str = "source"

    @property
    @abstractmethod
    def identity(self) -> str:
        """Stable identifier, e.g. ``file:/tmp/event.json``."""

    @abstractmethod
    async def run(self, channel: EventChannel) -> None:
        """Produce events into ``channel`` until stopped."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.identity}>"
