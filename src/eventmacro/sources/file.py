"""Single-file polling source."""

import stat
from pathlib import Path
from typing import Optional

import structlog

from .base import EventSource, PollTimer, parse_event
from .channel import ChannelClosed, EventChannel


logger = structlog.get_logger()

Signature = tuple[int, int]


class FileSource(EventSource):
    """
    Polls one file for a JSON event.

    - ``delete_on_success=True``: every non-empty, parseable read is
      dispatched and the file removed, so each event needs a new file.
    - ``delete_on_success=False``: the file is dispatched only when its
      (size, mtime seconds) signature differs from the last dispatch.

    Missing files are expected before a producer writes one and are not
    logged. Unparseable content is logged and retried on the next tick.
    """

    name = "file"

    def __init__(self, path: str | Path, poll_ms: int = 100, delete_on_success: bool = False):
        self.path = Path(path)
        self.timer = PollTimer(poll_ms)
        self.delete_on_success = delete_on_success
        self._last_sig: Optional[Signature] = None
        self._warned_not_regular = False

    @property
    def identity(self) -> str:
        return f"file:{self.path}"

    async def run(self, channel: EventChannel) -> None:
        logger.info(
            "source_started",
            source=self.identity,
            poll_ms=int(self.timer.interval * 1000),
            delete_on_success=self.delete_on_success,
        )
        try:
            while not channel.closed:
                await self.timer.wait()
                await self.poll_once(channel)
        except ChannelClosed:
            pass
        logger.info("source_stopped", source=self.identity)

    async def poll_once(self, channel: EventChannel) -> bool:
        """Check the file once. Returns True if an event was dispatched."""
        try:
            st = self.path.stat()
        except FileNotFoundError:
            self._warned_not_regular = False
            return False
        except OSError as e:
            logger.warning("file_stat_failed", source=self.identity, error=str(e))
            return False

        if not stat.S_ISREG(st.st_mode):
            if not self._warned_not_regular:
                logger.warning("file_not_regular", source=self.identity)
                self._warned_not_regular = True
            return False
        self._warned_not_regular = False

        sig = (st.st_size, int(st.st_mtime))
        if not self.delete_on_success and sig == self._last_sig:
            return False

        try:
            content = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return False
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("file_read_failed", source=self.identity, error=str(e))
            return False

        if not content:
            return False

        try:
            event = parse_event(content)
        except ValueError as e:
            logger.warning("event_parse_failed", source=self.identity, error=str(e))
            return False

        await channel.send(event)
        logger.info("event_dispatched", source=self.identity)

        if self.delete_on_success:
            try:
                self.path.unlink()
            except OSError as e:
                logger.warning("file_delete_failed", source=self.identity, error=str(e))
        else:
            self._last_sig = sig
        return True
