"""Line-oriented JSON events from standard input."""

import asyncio
import concurrent.futures
import sys
import threading
from typing import Optional, TextIO

import structlog

from .base import EventSource, parse_event
from .channel import ChannelClosed, EventChannel


logger = structlog.get_logger()

_EOF = object()

HANDOFF_POLL_SECONDS = 0.05
READER_JOIN_SECONDS = 0.5


class StdinSource(EventSource):
    """
    Reads one JSON event per line until end of input.

    Blocking reads happen on a daemon thread that hands each line to the
    event loop and waits until it has been taken; a slow consumer throttles
    reading. When the source ends the reader is told to stop and joined. A
    reader still parked in readline() on a terminal is left to the process.
    """

    name = "stdin"

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream
        self.reader: Optional[threading.Thread] = None

    @property
    def identity(self) -> str:
        return "stdin"

    async def run(self, channel: EventChannel) -> None:
        stream = self.stream if self.stream is not None else sys.stdin
        loop = asyncio.get_running_loop()
        lines: asyncio.Queue = asyncio.Queue(maxsize=1)
        stop = threading.Event()

        self.reader = threading.Thread(
            target=self._read_lines,
            args=(stream, lines, loop, stop),
            name="eventmacro-stdin",
            daemon=True,
        )
        self.reader.start()
        logger.info("source_started", source=self.identity)

        try:
            while True:
                line = await lines.get()
                if line is _EOF:
                    logger.info("stdin_eof", source=self.identity)
                    break
                await self._handle_line(line, channel)
        except ChannelClosed:
            pass
        finally:
            stop.set()
            _drain(lines)
            # a reader parked in readline() on a real terminal cannot be joined
            await asyncio.to_thread(self.reader.join, READER_JOIN_SECONDS)
            _drain(lines)
            if self.reader.is_alive():
                logger.debug("stdin_reader_detached", source=self.identity)
        logger.info("source_stopped", source=self.identity)

    async def _handle_line(self, line: str, channel: EventChannel) -> None:
        raw = line.strip()
        if not raw:
            return
        try:
            event = parse_event(raw)
        except ValueError as e:
            logger.warning("event_parse_failed", source=self.identity, error=str(e), line=raw[:200])
            return
        await channel.send(event)
        logger.debug("event_dispatched", source=self.identity)

    def _read_lines(
        self,
        stream: TextIO,
        lines: asyncio.Queue,
        loop: asyncio.AbstractEventLoop,
        stop: threading.Event,
    ) -> None:
        """Reader thread body. Returns once ``stop`` is set or input ends."""
        try:
            for line in iter(stream.readline, ""):
                if stop.is_set():
                    return
                future = asyncio.run_coroutine_threadsafe(lines.put(line), loop)
                while True:
                    try:
                        future.result(timeout=HANDOFF_POLL_SECONDS)
                        break
                    except concurrent.futures.TimeoutError:
                        if stop.is_set():
                            future.cancel()
                            return
        except (OSError, ValueError) as e:
            logger.warning("stdin_read_failed", source=self.identity, error=str(e))
        except (RuntimeError, concurrent.futures.CancelledError):
            # event loop closed or the run task went away
            return
        if stop.is_set():
            return
        try:
            asyncio.run_coroutine_threadsafe(lines.put(_EOF), loop)
        except RuntimeError:
            pass


def _drain(lines: asyncio.Queue) -> None:
    while True:
        try:
            lines.get_nowait()
        except asyncio.QueueEmpty:
            return
