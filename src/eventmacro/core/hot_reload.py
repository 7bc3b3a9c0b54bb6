"""
Hot-reload module for the config file.

Watches the config file for changes and swaps in a fully validated config
without affecting the workflow run in progress.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import structlog

from .config import Config, ConfigLoader
from .errors import ConfigError

logger = structlog.get_logger()


@dataclass
class ReloadResult:
    """Result of a config reload attempt."""
    success: bool
    config_hash: Optional[str] = None
    workflows_loaded: int = 0
    actions_loaded: int = 0
    errors: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.now)


class HotReloader:
    """
    Hot-reload manager for the config file.

    Features:
    - Polls the file content hash
    - Debounces rapid writes
    - Validates the whole config before applying
    - A rejected config keeps the current one in place
    """

    def __init__(
        self,
        path: str | Path,
        on_reload: Callable[[Config], Awaitable[None]],
        check_interval_seconds: float = 2.0,
        debounce_seconds: float = 0.5,
        config_loader: Optional[ConfigLoader] = None,
    ):
        self.path = Path(path)
        self.on_reload = on_reload
        self.check_interval_seconds = check_interval_seconds
        self.debounce_seconds = debounce_seconds
        self.config_loader = config_loader or ConfigLoader()

        self._file_hash: str = ""
        self._running = False
        self._watch_task: Optional[asyncio.Task] = None
        self.last_result: Optional[ReloadResult] = None

    async def start(self) -> None:
        """Start watching for config changes."""
        self._running = True
        self._file_hash = self.config_loader.compute_file_hash(self.path)
        self._watch_task = asyncio.create_task(self._watch_loop())
        logger.info(
            "hot_reload_started",
            path=str(self.path),
            interval=self.check_interval_seconds,
        )

    async def stop(self) -> None:
        """Stop watching for changes."""
        self._running = False
        if self._watch_task:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
        logger.info("hot_reload_stopped")

    async def force_reload(self) -> ReloadResult:
        """Force an immediate reload."""
        self._file_hash = self.config_loader.compute_file_hash(self.path)
        return await self._do_reload()

    async def _watch_loop(self) -> None:
        """Background loop to watch for file changes."""
        while self._running:
            try:
                await asyncio.sleep(self.check_interval_seconds)

                if self._detect_change():
                    # Debounce - wait for writes to settle
                    await asyncio.sleep(self.debounce_seconds)
                    self._detect_change()
                    await self._do_reload()

            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("hot_reload_watch_error")

    def _detect_change(self) -> bool:
        """Check whether the file content hash changed since the last look."""
        new_hash = self.config_loader.compute_file_hash(self.path)
        if new_hash != self._file_hash:
            logger.debug("config_file_changed", file=str(self.path))
            self._file_hash = new_hash
            return True
        return False

    async def _do_reload(self) -> ReloadResult:
        """Perform the actual reload with validation."""
        try:
            config = self.config_loader.load(self.path)
        except ConfigError as e:
            logger.error("hot_reload_rejected", path=str(self.path), error=e.message)
            return self._record(ReloadResult(success=False, errors=[e.message]))
        except OSError as e:
            logger.error("hot_reload_rejected", path=str(self.path), error=str(e))
            return self._record(ReloadResult(success=False, errors=[str(e)]))

        try:
            await self.on_reload(config)
        except Exception as e:
            logger.exception("hot_reload_apply_error")
            return self._record(ReloadResult(success=False, errors=[f"Apply error: {e}"]))

        return self._record(
            ReloadResult(
                success=True,
                config_hash=config.config_hash(),
                workflows_loaded=len(config.workflows),
                actions_loaded=len(config.actions),
            )
        )

    def _record(self, result: ReloadResult) -> ReloadResult:
        self.last_result = result
        return result
