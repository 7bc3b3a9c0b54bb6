"""Event sources: file, directory, TCP and stdin producers feeding one channel."""

from typing import Iterable

from ..core.config import (
    DirectorySourceConfig,
    FileSourceConfig,
    SourceConfig,
    StdinSourceConfig,
    TcpSourceConfig,
)
from .base import EventSource, PollTimer, parse_event
from .channel import ChannelClosed, EventChannel
from .directory import DirectorySource, wildcard_match
from .file import FileSource
from .stdin import StdinSource
from .tcp import TcpSource


def build_source(cfg: SourceConfig) -> EventSource:
    """Create the source described by one config entry."""
    if isinstance(cfg, FileSourceConfig):
        return FileSource(cfg.path, poll_ms=cfg.poll_ms, delete_on_success=cfg.delete_on_success)
    if isinstance(cfg, DirectorySourceConfig):
        return DirectorySource(
            cfg.path,
            pattern=cfg.pattern,
            recursive=cfg.recursive,
            poll_ms=cfg.poll_ms,
        )
    if isinstance(cfg, TcpSourceConfig):
        return TcpSource(cfg.host, cfg.port, ack=cfg.ack, max_line_bytes=cfg.max_line_bytes)
    if isinstance(cfg, StdinSourceConfig):
        return StdinSource()
    raise TypeError(f"Unsupported source config: {type(cfg).__name__}")


def build_sources_from_config(configs: Iterable[SourceConfig]) -> list[EventSource]:
    """Create sources in config order."""
    return [build_source(cfg) for cfg in configs]


__all__ = [
    "EventSource",
    "PollTimer",
    "parse_event",
    "ChannelClosed",
    "EventChannel",
    "DirectorySource",
    "wildcard_match",
    "FileSource",
    "StdinSource",
    "TcpSource",
    "build_source",
    "build_sources_from_config",
]
