"""Newline-delimited JSON over TCP."""

import asyncio
from typing import Optional

import structlog

from ..core.errors import ErrorSeverity, IngestionError
from .base import EventSource, parse_event
from .channel import ChannelClosed, EventChannel


logger = structlog.get_logger()


class TcpSource(EventSource):
    """
    TCP listener accepting one JSON event per line.

    Each connection is served by its own task. A parsed line is dispatched
    and answered with ``OK``; a bad line is answered with ``ERROR <reason>``
    and the connection stays open. Responses are only written when ``ack``
    is enabled. Port 0 binds an ephemeral port, exposed as ``port`` once
    ``started`` is set.
    """

    name = "tcp"

    def __init__(self, host: str, port: int, ack: bool = True, max_line_bytes: int = 1024 * 1024):
        self.host = host
        self.requested_port = port
        self.ack = ack
        self.max_line_bytes = max_line_bytes

        self.port: Optional[int] = None
        self.started = asyncio.Event()
        self._stop = asyncio.Event()
        self._server: Optional[asyncio.AbstractServer] = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._handlers: set[asyncio.Task] = set()

    @property
    def identity(self) -> str:
        return f"tcp:{self.host}:{self.requested_port}"

    async def run(self, channel: EventChannel) -> None:
        try:
            self._server = await asyncio.start_server(
                lambda r, w: self._handle_connection(r, w, channel),
                host=self.host,
                port=self.requested_port,
                limit=self.max_line_bytes,
            )
        except OSError as e:
            logger.error("tcp_bind_failed", source=self.identity, error=str(e))
            raise IngestionError(
                f"Cannot bind {self.host}:{self.requested_port}: {e}",
                source=self.identity,
                severity=ErrorSeverity.HIGH,
            ) from e

        self.port = self._server.sockets[0].getsockname()[1]
        self.started.set()
        logger.info("source_started", source=self.identity, host=self.host, port=self.port)

        stop_wait = asyncio.ensure_future(self._stop.wait())
        closed_wait = asyncio.ensure_future(channel.wait_closed())
        try:
            await asyncio.wait({stop_wait, closed_wait}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop_wait.cancel()
            closed_wait.cancel()
            self._stop.set()
            await self._shutdown()
            logger.info("source_stopped", source=self.identity)

    def stop(self) -> None:
        self._stop.set()

    async def _shutdown(self) -> None:
        self._server.close()
        for writer in list(self._writers):
            writer.close()
        handlers = [t for t in self._handlers if t is not asyncio.current_task()]
        for task in handlers:
            task.cancel()
        if handlers:
            await asyncio.gather(*handlers, return_exceptions=True)
        await self._server.wait_closed()

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        channel: EventChannel,
    ) -> None:
        peer = writer.get_extra_info("peername")
        task = asyncio.current_task()
        self._handlers.add(task)
        self._writers.add(writer)
        logger.debug("tcp_client_connected", source=self.identity, peer=str(peer))
        try:
            while not self._stop.is_set():
                try:
                    raw = await reader.readuntil(b"\n")
                except asyncio.IncompleteReadError as e:
                    # EOF; a final unterminated line still counts
                    if not e.partial.strip():
                        break
                    raw = e.partial
                except asyncio.LimitOverrunError:
                    await self._discard_long_line(reader)
                    await self._respond(writer, f"ERROR line exceeds {self.max_line_bytes} bytes")
                    continue

                line = raw.strip()
                if line:
                    await self._handle_line(line, writer, channel, peer)
                if not raw.endswith(b"\n"):
                    break
        except ChannelClosed:
            self._stop.set()
        except (ConnectionError, OSError) as e:
            logger.debug("tcp_client_error", source=self.identity, peer=str(peer), error=str(e))
        finally:
            self._handlers.discard(task)
            self._writers.discard(writer)
            writer.close()
            logger.debug("tcp_client_disconnected", source=self.identity, peer=str(peer))

    async def _handle_line(
        self,
        line: bytes,
        writer: asyncio.StreamWriter,
        channel: EventChannel,
        peer,
    ) -> None:
        try:
            text = line.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning("event_decode_failed", source=self.identity, peer=str(peer), error=str(e))
            await self._respond(writer, "ERROR invalid utf-8")
            return

        try:
            event = parse_event(text)
        except ValueError as e:
            logger.warning("event_parse_failed", source=self.identity, peer=str(peer), error=str(e))
            await self._respond(writer, f"ERROR {e}")
            return

        await channel.send(event)
        logger.info("event_dispatched", source=self.identity, peer=str(peer))
        await self._respond(writer, "OK")

    async def _discard_long_line(self, reader: asyncio.StreamReader) -> None:
        """Skip the rest of an over-long line, up to and including its newline."""
        while True:
            try:
                await reader.readuntil(b"\n")
                return
            except asyncio.LimitOverrunError as e:
                await reader.readexactly(e.consumed)
            except asyncio.IncompleteReadError:
                return

    async def _respond(self, writer: asyncio.StreamWriter, message: str) -> None:
        if not self.ack:
            return
        try:
            writer.write((message.replace("\n", " ") + "\n").encode())
            await writer.drain()
        except (ConnectionError, OSError) as e:
            logger.debug("tcp_respond_failed", source=self.identity, error=str(e))
