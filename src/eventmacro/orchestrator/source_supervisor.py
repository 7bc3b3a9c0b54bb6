"""
Supervised set of event source tasks.

Each source runs in its own task, keyed by the source identity. A crash in
one source is logged and ends only that source.
"""

import asyncio
from enum import Enum
from typing import Any, Optional

import structlog

from ..core.errors import FrameworkError
from ..sources.base import EventSource
from ..sources.channel import EventChannel


logger = structlog.get_logger()


class SourceState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SourceSupervisor:
    """Starts, tracks and stops source tasks."""

    def __init__(self, sources: list[EventSource]):
        self._sources: dict[str, EventSource] = {}
        for source in sources:
            key = source.identity
            n = 2
            while key in self._sources:
                key = f"{source.identity}#{n}"
                n += 1
            self._sources[key] = source

        self._tasks: dict[str, asyncio.Task] = {}
        self._states: dict[str, SourceState] = {k: SourceState.PENDING for k in self._sources}
        self._errors: dict[str, str] = {}

    @property
    def keys(self) -> list[str]:
        return list(self._sources)

    def start(self, channel: EventChannel) -> None:
        """Spawn one task per source."""
        for key, source in self._sources.items():
            if key in self._tasks:
                continue
            self._states[key] = SourceState.RUNNING
            self._tasks[key] = asyncio.create_task(
                self._run_source(key, source, channel),
                name=f"source:{key}",
            )
        logger.info("sources_started", count=len(self._tasks), sources=self.keys)

    async def _run_source(self, key: str, source: EventSource, channel: EventChannel) -> None:
        try:
            await source.run(channel)
        except asyncio.CancelledError:
            self._states[key] = SourceState.CANCELLED
            raise
        except FrameworkError as e:
            self._states[key] = SourceState.FAILED
            self._errors[key] = e.message
            logger.error("source_failed", source=key, error=e.message, category=e.category.value)
        except Exception as e:
            self._states[key] = SourceState.FAILED
            self._errors[key] = str(e)
            logger.exception("source_crashed", source=key)
        else:
            self._states[key] = SourceState.FINISHED
            logger.info("source_finished", source=key)

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for every source to end on its own. Returns False on timeout."""
        tasks = list(self._tasks.values())
        if not tasks:
            return True
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        return not pending

    async def stop(self) -> None:
        """Cancel all running sources and wait for them to unwind."""
        running = [t for t in self._tasks.values() if not t.done()]
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        logger.info("sources_stopped", cancelled=len(running))

    def all_done(self) -> bool:
        return all(t.done() for t in self._tasks.values())

    def status(self) -> dict[str, dict[str, Any]]:
        result = {}
        for key in self._sources:
            entry: dict[str, Any] = {"state": self._states[key].value}
            if key in self._errors:
                entry["error"] = self._errors[key]
            result[key] = entry
        return result
