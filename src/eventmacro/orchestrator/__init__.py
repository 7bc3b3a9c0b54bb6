"""Orchestration: event pipeline supervisor and source task supervision."""

from .source_supervisor import SourceState, SourceSupervisor
from .supervisor import Supervisor, SupervisorState

__all__ = ["SourceState", "SourceSupervisor", "Supervisor", "SupervisorState"]
