"""Core framework components."""

from .errors import (
    FrameworkError,
    ConfigError,
    RoutingError,
    InterpreterError,
    UnknownWorkflowError,
    UnresolvedReferenceError,
    MaxDepthExceededError,
    CapabilityError,
    IngestionError,
)
from .config import Config, ConfigLoader, load_from_dict, load_from_str

__all__ = [
    "FrameworkError",
    "ConfigError",
    "RoutingError",
    "InterpreterError",
    "UnknownWorkflowError",
    "UnresolvedReferenceError",
    "MaxDepthExceededError",
    "CapabilityError",
    "IngestionError",
    "Config",
    "ConfigLoader",
    "load_from_dict",
    "load_from_str",
]
