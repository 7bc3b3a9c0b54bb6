"""
Main entry point for eventmacro.

Loads the config, starts the supervisor, optional health server, config
hot reload and signal handlers.
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Optional

import structlog
from aiohttp import web
from dotenv import load_dotenv

from .core.config import Config, ConfigLoader, generate_schema
from .core.errors import ConfigError
from .core.hot_reload import HotReloader
from .orchestrator.supervisor import Supervisor


logger = structlog.get_logger()


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging over stdlib logging."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class HealthServer:
    """Simple HTTP health check server."""

    def __init__(self, supervisor: Supervisor, port: int = 8080, host: str = "127.0.0.1"):
        self.supervisor = supervisor
        self.port = port
        self.host = host
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._health_handler)
        app.router.add_get("/status", self._status_handler)
        app.router.add_get("/ready", self._ready_handler)
        return app

    async def start(self) -> None:
        """Start the health server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()

        logger.info("health_server_started", host=self.host, port=self.port)

    async def stop(self) -> None:
        """Stop the health server."""
        if self._runner:
            await self._runner.cleanup()
            logger.info("health_server_stopped")

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Basic health check - is the process alive."""
        return web.json_response({"status": "healthy"})

    async def _ready_handler(self, request: web.Request) -> web.Response:
        """Readiness check - is the supervisor consuming events."""
        status = await self.supervisor.get_status()

        if status["state"] == "running":
            return web.json_response({"status": "ready", "state": status["state"]})
        return web.json_response(
            {"status": "not_ready", "state": status["state"]},
            status=503,
        )

    async def _status_handler(self, request: web.Request) -> web.Response:
        """Detailed status information."""
        status = await self.supervisor.get_status()
        return web.json_response(status)


class Application:
    """Main application container."""

    def __init__(
        self,
        config_path: str,
        dry_run: bool = False,
        health_port: Optional[int] = None,
        hot_reload: bool = True,
    ):
        self.config_path = config_path
        self.dry_run = dry_run
        self.health_port = health_port
        self.hot_reload = hot_reload

        self.config: Optional[Config] = None
        self.supervisor: Optional[Supervisor] = None
        self.health_server: Optional[HealthServer] = None
        self.reloader: Optional[HotReloader] = None

    async def start(self) -> None:
        """Load config and start all components."""
        logger.info("application_starting", config_path=self.config_path)

        self.config = ConfigLoader().load(self.config_path)
        if self.dry_run and not self.config.settings.dry_run:
            settings = self.config.settings.model_copy(update={"dry_run": True})
            self.config = self.config.model_copy(update={"settings": settings})

        self.supervisor = Supervisor(self.config)
        await self.supervisor.start()

        if self.hot_reload:
            self.reloader = HotReloader(self.config_path, self._apply_reload)
            await self.reloader.start()

        if self.health_port:
            self.health_server = HealthServer(self.supervisor, port=self.health_port)
            await self.health_server.start()

        logger.info(
            "application_started",
            dry_run=self.config.settings.dry_run,
            config_hash=self.config.config_hash(),
        )

    async def _apply_reload(self, config: Config) -> None:
        if self.dry_run and not config.settings.dry_run:
            settings = config.settings.model_copy(update={"dry_run": True})
            config = config.model_copy(update={"settings": settings})
        await self.supervisor.apply_hot_reload(config)

    async def run(self) -> None:
        """Consume events until the sources end or shutdown is requested."""
        await self.supervisor.run()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        if self.supervisor:
            self.supervisor.request_shutdown()

    async def stop(self) -> None:
        """Stop all components."""
        logger.info("application_stopping")

        if self.reloader:
            await self.reloader.stop()

        if self.health_server:
            await self.health_server.stop()

        if self.supervisor:
            await self.supervisor.stop()

        logger.info("application_stopped")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eventmacro",
        description="Run automation workflows in response to JSON events.",
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "./config/default.yaml"),
        help="Config file (.yaml, .yml or .json); env CONFIG_PATH",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=os.getenv("DRY_RUN", "").lower() in ("1", "true", "yes"),
        help="Record capability calls instead of driving the desktop; env DRY_RUN",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Log level; env LOG_LEVEL",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        default=int(os.getenv("HEALTH_PORT", "0")) or None,
        help="Serve /health, /ready and /status on this port; env HEALTH_PORT",
    )
    parser.add_argument(
        "--no-reload",
        action="store_true",
        help="Disable config hot reload",
    )
    parser.add_argument(
        "--print-schema",
        action="store_true",
        help="Print the config JSON Schema and exit",
    )
    return parser


async def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_arg_parser().parse_args(argv)
    configure_logging(args.log_level, json_format=os.getenv("LOG_FORMAT") == "json")

    if args.print_schema:
        print(json.dumps(generate_schema(), indent=2))
        return 0

    app = Application(
        config_path=args.config,
        dry_run=args.dry_run,
        health_port=args.health_port,
        hot_reload=not args.no_reload,
    )

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("shutdown_signal_received")
        app.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows event loops; Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    try:
        await app.start()
        await app.run()
    except ConfigError as e:
        logger.error("config_invalid", error=e.message, config_path=e.context.get("config_path"))
        return 2
    except Exception:
        logger.exception("application_error")
        return 1
    finally:
        await app.stop()
    return 0


def cli() -> None:
    load_dotenv()
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    cli()
