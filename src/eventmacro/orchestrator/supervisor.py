"""
Supervisor - owns the event pipeline.

Wires sources, the bounded channel, the router and the interpreter
together, runs the consumer loop and coordinates shutdown.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Mapping, Optional

import structlog

from ..capabilities import CapabilityProvider, create_provider
from ..core.config import Config
from ..core.errors import FrameworkError, InterpreterError, RoutingError
from ..sources import EventChannel, EventSource, build_sources_from_config
from ..workflow.interpreter import WorkflowInterpreter, WorkflowRun
from ..workflow.router import EventRouter
from .source_supervisor import SourceSupervisor


logger = structlog.get_logger()


class SupervisorState(Enum):
    """Supervisor operational states."""
    INITIALIZING = "initializing"
    RUNNING = "running"
    DRAINING = "draining"  # Sources done, consuming what is left
    SHUTDOWN = "shutdown"


class Supervisor:
    """
    Central pipeline supervisor.

    Responsibilities:
    - Start and supervise event sources
    - Consume events one at a time and run the bound workflow
    - Keep per-outcome counters for diagnostics
    - Apply hot-reloaded configs between runs
    - Handle graceful shutdown
    """

    def __init__(
        self,
        config: Config,
        provider: Optional[CapabilityProvider] = None,
        sources: Optional[list[EventSource]] = None,
    ):
        self.config = config
        self.provider = provider or create_provider(config.settings.dry_run)
        self.interpreter = WorkflowInterpreter(self.provider)
        self.router = EventRouter(config, self.interpreter)
        self.channel = EventChannel(config.settings.queue_capacity)
        self.sources = SourceSupervisor(
            sources if sources is not None else build_sources_from_config(config.sources)
        )

        # State
        self._state = SupervisorState.INITIALIZING
        self._start_time: Optional[float] = None
        self._shutdown_event = asyncio.Event()
        self._watch_task: Optional[asyncio.Task] = None

        # Counters
        self.processed = 0
        self.failed = 0
        self.dropped = 0
        self.discarded = 0

    @property
    def state(self) -> SupervisorState:
        return self._state

    async def start(self) -> None:
        """Start sources and the source watcher."""
        if self._state != SupervisorState.INITIALIZING:
            return
        logger.info(
            "supervisor_starting",
            sources=len(self.sources.keys),
            workflows=len(self.config.workflows),
            events=len(self.config.events),
            provider=self.provider.name,
        )
        if not self.sources.keys:
            logger.warning("no_sources_configured")

        self.sources.start(self.channel)
        self._watch_task = asyncio.create_task(self._watch_sources(), name="source-watcher")
        self._state = SupervisorState.RUNNING
        self._start_time = time.time()
        logger.info("supervisor_started")

    async def run(self) -> None:
        """
        Consume events until the channel is closed and drained or shutdown is
        requested, then stop.
        """
        await self.start()
        try:
            while not self._shutdown_event.is_set():
                event = await self.channel.recv()
                if event is None:
                    break
                if self._shutdown_event.is_set():
                    self.discarded += 1
                    break
                await self.process_event(event)
        finally:
            await self.stop()

    async def process_event(self, event: Any) -> Optional[WorkflowRun]:
        """Route and run one event. Failures are logged and counted, never raised."""
        try:
            run = await self.router.route(event)
        except RoutingError as e:
            self.dropped += 1
            logger.warning("event_dropped", reason=e.message, **_log_context(e))
            return None
        except InterpreterError as e:
            self.failed += 1
            logger.error("workflow_failed", error=e.message, error_type=type(e).__name__, **_log_context(e))
            return None
        except FrameworkError as e:
            self.failed += 1
            logger.error("event_failed", error=e.message, error_type=type(e).__name__)
            return None
        except Exception:
            self.failed += 1
            logger.exception("event_handler_error")
            return None

        self.processed += 1
        return run

    async def _watch_sources(self) -> None:
        """Close the channel once every source has ended on its own."""
        await self.sources.wait()
        if not self._shutdown_event.is_set():
            logger.info("all_sources_finished", pending=self.channel.qsize())
            self._state = SupervisorState.DRAINING
            self.channel.close()

    def request_shutdown(self) -> None:
        """Ask the consumer loop to stop after the current event."""
        if self._shutdown_event.is_set():
            return
        logger.info("shutdown_requested")
        self._shutdown_event.set()
        self.channel.close()

    async def stop(self) -> None:
        """Stop sources and release the provider."""
        if self._state == SupervisorState.SHUTDOWN:
            return

        logger.info("supervisor_stopping")
        self._shutdown_event.set()
        self.channel.close()
        await self.sources.stop()

        if self._watch_task and not self._watch_task.done():
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass

        self.discarded += self.channel.qsize()
        await self.provider.close()
        self._state = SupervisorState.SHUTDOWN
        logger.info(
            "supervisor_stopped",
            processed=self.processed,
            failed=self.failed,
            dropped=self.dropped,
            discarded=self.discarded,
        )

    # ==================== Config ====================

    async def apply_hot_reload(self, config: Config) -> None:
        """
        Swap in a reloaded config. Runs already in progress finish on the
        previous snapshot; sources are not rebuilt.
        """
        if config.sources != self.config.sources:
            logger.warning("hot_reload_sources_ignored")
        self.router.replace_config(config)
        self.config = config
        logger.info(
            "hot_reload_applied",
            workflows=len(config.workflows),
            actions=len(config.actions),
            events=len(config.events),
        )

    def update_globals(self, updates: Mapping[str, Any]) -> None:
        self.config = self.router.update_globals(updates)

    # ==================== Status & Diagnostics ====================

    async def get_status(self) -> dict[str, Any]:
        """Get supervisor status for diagnostics."""
        return {
            "state": self._state.value,
            "uptime_seconds": time.time() - self._start_time if self._start_time else 0,
            "provider": self.provider.name,
            "config_hash": self.config.config_hash(),
            "counters": {
                "processed": self.processed,
                "failed": self.failed,
                "dropped": self.dropped,
                "discarded": self.discarded,
            },
            "queue": {
                "depth": self.channel.qsize(),
                "capacity": self.channel.capacity,
                "closed": self.channel.closed,
            },
            "sources": self.sources.status(),
        }


def _log_context(error: FrameworkError) -> dict[str, Any]:
    return {k: v for k, v in error.context.items() if v is not None}
