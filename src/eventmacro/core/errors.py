"""Framework error definitions."""

from typing import Optional, Any
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for classification."""
    LOW = "low"           # Single input affected, keep going
    MEDIUM = "medium"     # Current workflow run aborted
    HIGH = "high"         # Component stopped (e.g. a source)
    CRITICAL = "critical" # Startup aborted


class ErrorCategory(Enum):
    """Error categories for routing and handling."""
    CONFIG = "config"             # Config parsing or cross-reference failure
    ROUTING = "routing"           # Event could not be matched to a workflow
    EXECUTION = "execution"       # Workflow interpretation failure
    CAPABILITY = "capability"     # Input simulation / window / OCR backend
    INGESTION = "ingestion"       # Event source I/O or payload failure


class FrameworkError(Exception):
    """Base exception for all framework errors."""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        context: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.severity = severity
        self.category = category
        self.context = context or {}
        self.retryable = retryable

    def fingerprint(self) -> str:
        """Generate error fingerprint for deduplication."""
        import hashlib
        components = [
            self.__class__.__name__,
            self.category.value,
            str(self.context.get("workflow", "")),
            str(self.context.get("step_index", "")),
            str(self.context.get("source", "")),
        ]
        return hashlib.sha256(":".join(components).encode()).hexdigest()[:16]

    def to_dict(self) -> dict[str, Any]:
        """Serialize error for logging."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context,
            "retryable": self.retryable,
            "fingerprint": self.fingerprint(),
        }


class ConfigError(FrameworkError):
    """Configuration loading or validation error."""

    def __init__(self, message: str, config_path: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.CRITICAL)
        kwargs.setdefault("category", ErrorCategory.CONFIG)
        super().__init__(message, **kwargs)
        self.context["config_path"] = config_path


class RoutingError(FrameworkError):
    """Event could not be routed to a workflow; the event is dropped."""

    def __init__(self, message: str, event_type: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.ROUTING)
        super().__init__(message, **kwargs)
        self.context["event_type"] = event_type


class InterpreterError(FrameworkError):
    """Workflow execution error. Aborts the current run only."""

    def __init__(
        self,
        message: str,
        workflow: Optional[str] = None,
        step_index: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.EXECUTION)
        super().__init__(message, **kwargs)
        self.context.setdefault("workflow", workflow)
        self.context.setdefault("step_index", step_index)


class UnknownWorkflowError(InterpreterError):
    """Requested workflow does not exist."""


class UnresolvedReferenceError(InterpreterError):
    """A `ref` action names an action missing from the named actions table."""

    def __init__(self, message: str, reference: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.context["reference"] = reference


class MaxDepthExceededError(InterpreterError):
    """Action nesting went past the configured ceiling (likely a ref cycle)."""

    def __init__(self, message: str, max_depth: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.context["max_depth"] = max_depth


class CapabilityError(InterpreterError):
    """Capability provider operation failed."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        kwargs.setdefault("category", ErrorCategory.CAPABILITY)
        super().__init__(message, **kwargs)
        self.context["operation"] = operation


class IngestionError(FrameworkError):
    """Event source I/O or payload error."""

    def __init__(self, message: str, source: Optional[str] = None, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.LOW)
        kwargs.setdefault("category", ErrorCategory.INGESTION)
        super().__init__(message, **kwargs)
        self.context["source"] = source
