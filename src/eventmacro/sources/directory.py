"""Directory polling source."""

from collections import deque
from pathlib import Path
from typing import Optional

import structlog

from .base import EventSource, PollTimer, parse_event
from .channel import ChannelClosed, EventChannel


logger = structlog.get_logger()


def wildcard_match(name: str, pattern: str) -> bool:
    """
    Case-sensitive match where ``*`` stands for any (possibly empty) substring.

    The text before the first ``*`` must be a prefix of ``name`` and the text
    after the last ``*`` a suffix; the pieces in between must appear in order
    without overlapping. A pattern without ``*`` must equal ``name``.

    >>> wildcard_match("event_1.json", "*.json")
    True
    >>> wildcard_match("a.json.tmp", "*.json")
    False
    """
    parts = pattern.split("*")
    if len(parts) == 1:
        return name == pattern

    prefix, middle, suffix = parts[0], parts[1:-1], parts[-1]
    if len(name) < len(prefix) + len(suffix):
        return False
    if not name.startswith(prefix) or not name.endswith(suffix):
        return False

    pos = len(prefix)
    end = len(name) - len(suffix)
    for piece in middle:
        if not piece:
            continue
        idx = name.find(piece, pos, end)
        if idx < 0:
            return False
        pos = idx + len(piece)
    return True


class DirectorySource(EventSource):
    """
    Polls a directory for files holding one JSON event each.

    Each tick rescans the directory (recursively when configured), queues
    newly seen files matching ``pattern`` and handles the oldest queued file:

    - parsed: dispatched, then deleted as acknowledgement
    - empty or unparseable: left on disk and dropped from the queue, so it
      is picked up again once rescanned
    - dispatched but not deletable: remembered and never dispatched again
    """

    name = "directory"

    def __init__(
        self,
        path: str | Path,
        pattern: Optional[str] = None,
        recursive: bool = False,
        poll_ms: int = 400,
    ):
        self.path = Path(path)
        self.pattern = pattern
        self.recursive = recursive
        self.timer = PollTimer(poll_ms)

        self._pending: deque[Path] = deque()
        self._queued: set[Path] = set()
        self._undeletable: set[Path] = set()
        self._warned_missing = False

    @property
    def identity(self) -> str:
        return f"directory:{self.path}"

    @property
    def pending(self) -> list[Path]:
        return list(self._pending)

    async def run(self, channel: EventChannel) -> None:
        logger.info(
            "source_started",
            source=self.identity,
            pattern=self.pattern,
            recursive=self.recursive,
        )
        try:
            while not channel.closed:
                await self.timer.wait()
                self.scan()
                await self.process_next(channel)
        except ChannelClosed:
            pass
        logger.info("source_stopped", source=self.identity)

    def matches(self, file_name: str) -> bool:
        return self.pattern is None or wildcard_match(file_name, self.pattern)

    def scan(self) -> int:
        """Queue matching files not already queued. Returns how many were added."""
        if not self.path.is_dir():
            if not self._warned_missing:
                logger.warning("directory_missing", source=self.identity)
                self._warned_missing = True
            return 0
        self._warned_missing = False

        try:
            entries = self.path.rglob("*") if self.recursive else self.path.iterdir()
            found = sorted(p for p in entries if p.is_file() and self.matches(p.name))
        except OSError as e:
            logger.warning("directory_scan_failed", source=self.identity, error=str(e))
            return 0

        added = 0
        for file_path in found:
            if file_path in self._queued or file_path in self._undeletable:
                continue
            self._pending.append(file_path)
            self._queued.add(file_path)
            added += 1
        if added:
            logger.debug("directory_files_queued", source=self.identity, count=added)
        return added

    async def process_next(self, channel: EventChannel) -> bool:
        """Handle the oldest queued file. Returns True if an event was dispatched."""
        if not self._pending:
            return False
        file_path = self._pending.popleft()
        self._queued.discard(file_path)

        try:
            content = file_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return False
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("file_read_failed", source=self.identity, file=str(file_path), error=str(e))
            return False

        if not content:
            logger.debug("file_empty", source=self.identity, file=str(file_path))
            return False

        try:
            event = parse_event(content)
        except ValueError as e:
            logger.warning(
                "event_parse_failed",
                source=self.identity,
                file=str(file_path),
                error=str(e),
            )
            return False

        await channel.send(event)
        logger.info("event_dispatched", source=self.identity, file=str(file_path))

        try:
            file_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self._undeletable.add(file_path)
            logger.warning(
                "file_delete_failed",
                source=self.identity,
                file=str(file_path),
                error=str(e),
            )
        return True
