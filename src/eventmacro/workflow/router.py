"""Event router: event JSON -> binding -> variable scope -> workflow run."""

from typing import Any, Mapping, Optional

import structlog

from ..core.config import Config, EventBinding
from ..core.errors import RoutingError
from .interpolation import to_text
from .interpreter import WorkflowInterpreter, WorkflowRun


logger = structlog.get_logger()

_MISSING = object()


def extract_path(value: Any, path: str) -> Any:
    """
    Get a JSON value by dotted path (e.g. ``order.side``).

    Only objects are traversed. A missing key or a non-object intermediate
    yields a marker checked with :func:`is_missing` (JSON ``null`` is a real
    value). An empty path returns ``value`` itself.
    """
    if not path:
        return value
    current = value
    for seg in path.split("."):
        if not isinstance(current, dict) or seg not in current:
            return _MISSING
        current = current[seg]
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING


class EventRouter:
    """
    Routes inbound events to workflows.

    Flow:
    1. Read the discriminator field (``type`` by default)
    2. Look up the event binding
    3. Project event fields into the initial variable scope
    4. Run the bound workflow on a config snapshot

    The config is replaced only as a whole (``replace_config``), so a run
    started before a reload finishes on the tables it started with.
    """

    def __init__(self, config: Config, interpreter: WorkflowInterpreter):
        self._config = config
        self.interpreter = interpreter

    @property
    def config(self) -> Config:
        return self._config

    def replace_config(self, config: Config) -> None:
        """Swap in a new, already validated config."""
        self._config = config
        logger.info("router_config_replaced", config_hash=config.config_hash())

    def update_globals(self, updates: Mapping[str, Any]) -> Config:
        """Merge ``updates`` into globals by building and swapping a new config."""
        merged = {**self._config.globals, **updates}
        self._config = self._config.model_copy(update={"globals": merged})
        logger.info("globals_updated", keys=sorted(updates))
        return self._config

    async def route(self, event: Any) -> WorkflowRun:
        """
        Handle a raw event.

        Raises:
            RoutingError: event is not an object, has no string discriminator,
                has no binding, or misses a mapped field under the ``fail`` policy
            InterpreterError: the workflow run failed
        """
        config = self._config
        type_field = config.settings.event_type_field

        if not isinstance(event, dict):
            raise RoutingError(f"Event must be a JSON object, got {type(event).__name__}")

        event_type = event.get(type_field)
        if not isinstance(event_type, str):
            raise RoutingError(f"Event is missing string field '{type_field}'")

        binding = config.events.get(event_type)
        if binding is None:
            raise RoutingError(
                f"No event binding found for type '{event_type}'",
                event_type=event_type,
            )

        variables = self.variables_from_event(binding, event, event_type, config)
        logger.debug(
            "event_routed",
            event_type=event_type,
            workflow=binding.workflow,
            variables=sorted(variables),
        )
        return await self.interpreter.run(config, binding.workflow, variables, event)

    async def run_workflow(
        self,
        workflow_name: str,
        variables: Optional[dict[str, str]] = None,
    ) -> WorkflowRun:
        """Run a workflow directly with a caller-supplied scope, bypassing routing."""
        return await self.interpreter.run(self._config, workflow_name, variables or {})

    def variables_from_event(
        self,
        binding: EventBinding,
        event: Any,
        event_type: Optional[str] = None,
        config: Optional[Config] = None,
    ) -> dict[str, str]:
        """Build the initial variable scope from an event according to ``binding``."""
        config = config or self._config
        policy = binding.on_missing_field or config.settings.missing_field_policy

        variables: dict[str, str] = {}
        for var_name, path in binding.vars_map.items():
            value = extract_path(event, path)
            if not is_missing(value):
                variables[var_name] = to_text(value)
                continue

            if policy == "fail":
                raise RoutingError(
                    f"Event field '{path}' not found for variable '{var_name}'",
                    event_type=event_type,
                    context={"variable": var_name, "path": path},
                )
            logger.warning(
                "event_field_missing",
                event_type=event_type,
                variable=var_name,
                path=path,
                substituted="",
            )
            variables[var_name] = ""
        return variables
