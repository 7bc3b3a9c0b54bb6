"""Workflow interpreter: recursive descent over action trees."""

import random
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, Optional

import structlog

from ..capabilities.base import CapabilityProvider
from ..core.errors import (
    CapabilityError,
    FrameworkError,
    InterpreterError,
    MaxDepthExceededError,
    UnknownWorkflowError,
    UnresolvedReferenceError,
)
from .interpolation import interpolate
from .models import (
    ACTION_KINDS,
    ActionModel,
    CaptureScreenAction,
    ConditionalAction,
    FocusWindowAction,
    KeySeqAction,
    LogAction,
    LogLevel,
    MouseClickAction,
    MouseMoveAction,
    MouseScrollAction,
    OcrCheckAction,
    RefAction,
    SequenceAction,
    SetVarAction,
    SleepMsAction,
    SleepRandMsAction,
    TypeTextAction,
)

if TYPE_CHECKING:
    from ..core.config import Config


logger = structlog.get_logger()

DEFAULT_MAX_DEPTH = 64


@dataclass
class ExecutionContext:
    """State threaded through one workflow run."""
    workflow: str
    variables: dict[str, str]
    actions: Mapping[str, ActionModel]
    globals: Mapping[str, Any]
    event: Any = None
    max_depth: int = DEFAULT_MAX_DEPTH
    steps_executed: int = 0

    def interp(self, template: str) -> str:
        return interpolate(template, self.variables, self.globals)


@dataclass
class WorkflowRun:
    """Result of a completed workflow run."""
    workflow: str
    variables: dict[str, str] = field(default_factory=dict)
    steps_executed: int = 0
    duration_ms: float = 0


Handler = Callable[[Any, ExecutionContext, int], Awaitable[None]]


class WorkflowInterpreter:
    """
    Executes workflows against a capability provider.

    The interpreter holds no config of its own: each ``run`` receives the
    config snapshot to use, so a reload never changes an in-flight run.

    Features:
    - ordered sequences that stop at the first failing step
    - named action references resolved by name at execution time
    - string-equality conditionals
    - per-run variable scope mutated by ``set_var``
    - a hard depth ceiling that turns reference cycles into an error
    """

    def __init__(
        self,
        provider: CapabilityProvider,
        max_depth: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.provider = provider
        self.max_depth = max_depth
        self._rng = rng or random.Random()
        self._handlers: dict[type, Handler] = {
            SequenceAction: self._run_sequence,
            RefAction: self._run_ref,
            MouseMoveAction: self._run_mouse_move,
            MouseClickAction: self._run_mouse_click,
            MouseScrollAction: self._run_mouse_scroll,
            KeySeqAction: self._run_key_seq,
            TypeTextAction: self._run_type_text,
            SleepMsAction: self._run_sleep,
            SleepRandMsAction: self._run_sleep_rand,
            FocusWindowAction: self._run_focus_window,
            SetVarAction: self._run_set_var,
            ConditionalAction: self._run_conditional,
            LogAction: self._run_log,
            OcrCheckAction: self._run_ocr_check,
            CaptureScreenAction: self._run_capture_screen,
        }
        missing = set(ACTION_KINDS) - set(self._handlers)
        if missing:
            raise TypeError(
                "No interpreter handler for: "
                + ", ".join(sorted(k.__name__ for k in missing))
            )

    async def run(
        self,
        config: "Config",
        workflow_name: str,
        variables: Optional[dict[str, str]] = None,
        event: Any = None,
    ) -> WorkflowRun:
        """
        Execute every step of a workflow in order.

        Args:
            config: Config snapshot providing workflows, actions, globals and
                the depth ceiling (unless one was fixed at construction)
            workflow_name: Workflow to run
            variables: Initial variable scope (copied, never shared)
            event: Raw triggering event, if any

        Returns:
            WorkflowRun with the final scope

        Raises:
            InterpreterError: first failing step; context holds workflow and step_index
        """
        steps = config.workflows.get(workflow_name)
        if steps is None:
            raise UnknownWorkflowError(
                f"Unknown workflow '{workflow_name}'", workflow=workflow_name
            )

        ctx = ExecutionContext(
            workflow=workflow_name,
            variables=dict(variables or {}),
            actions=config.actions,
            globals=config.globals,
            event=event,
            max_depth=self.max_depth if self.max_depth is not None else config.settings.max_depth,
        )
        start_time = time.monotonic()
        logger.info("workflow_started", workflow=workflow_name, steps=len(steps))

        for idx, step in enumerate(steps):
            logger.debug("workflow_step", workflow=workflow_name, step_index=idx, action=step.type)
            try:
                await self.execute(step, ctx, 0)
            except InterpreterError as e:
                e.context["workflow"] = workflow_name
                e.context["step_index"] = idx
                raise

        duration_ms = (time.monotonic() - start_time) * 1000
        logger.info(
            "workflow_completed",
            workflow=workflow_name,
            steps_executed=ctx.steps_executed,
            duration_ms=round(duration_ms, 2),
        )
        return WorkflowRun(
            workflow=workflow_name,
            variables=ctx.variables,
            steps_executed=ctx.steps_executed,
            duration_ms=duration_ms,
        )

    async def execute(self, action: ActionModel, ctx: ExecutionContext, depth: int) -> None:
        """Execute one action (and its children) at the given nesting depth."""
        if depth > ctx.max_depth:
            raise MaxDepthExceededError(
                f"Maximum action nesting depth ({ctx.max_depth}) exceeded (possible cycle)",
                max_depth=ctx.max_depth,
            )

        handler = self._handlers[type(action)]
        ctx.steps_executed += 1
        try:
            await handler(action, ctx, depth)
        except FrameworkError:
            raise
        except Exception as e:
            raise CapabilityError(
                f"{action.type} failed: {e}", operation=action.type
            ) from e

    # ==================== Composites ====================

    async def _run_sequence(self, action: SequenceAction, ctx: ExecutionContext, depth: int) -> None:
        for step in action.steps:
            await self.execute(step, ctx, depth + 1)

    async def _run_ref(self, action: RefAction, ctx: ExecutionContext, depth: int) -> None:
        referenced = ctx.actions.get(action.name)
        if referenced is None:
            raise UnresolvedReferenceError(
                f"Referenced action '{action.name}' not found",
                reference=action.name,
            )
        await self.execute(referenced, ctx, depth + 1)

    async def _run_conditional(self, action: ConditionalAction, ctx: ExecutionContext, depth: int) -> None:
        lhs = ctx.interp(action.when)
        rhs = ctx.interp(action.equals)
        matched = lhs == rhs
        logger.debug("conditional_evaluated", when=lhs, equals=rhs, matched=matched, depth=depth)
        if matched:
            await self.execute(action.then, ctx, depth + 1)
        elif action.else_ is not None:
            await self.execute(action.else_, ctx, depth + 1)

    # ==================== Leaves ====================

    async def _run_mouse_move(self, action: MouseMoveAction, ctx: ExecutionContext, depth: int) -> None:
        await self.provider.move_to(action.x, action.y)

    async def _run_mouse_click(self, action: MouseClickAction, ctx: ExecutionContext, depth: int) -> None:
        await self.provider.click(action.button, action.count)

    async def _run_mouse_scroll(self, action: MouseScrollAction, ctx: ExecutionContext, depth: int) -> None:
        await self.provider.scroll(action.delta_x, action.delta_y)

    async def _run_key_seq(self, action: KeySeqAction, ctx: ExecutionContext, depth: int) -> None:
        await self.provider.send_keys(ctx.interp(action.text))

    async def _run_type_text(self, action: TypeTextAction, ctx: ExecutionContext, depth: int) -> None:
        await self.provider.type_text(ctx.interp(action.text))

    async def _run_sleep(self, action: SleepMsAction, ctx: ExecutionContext, depth: int) -> None:
        await self.provider.sleep(action.ms)

    async def _run_sleep_rand(self, action: SleepRandMsAction, ctx: ExecutionContext, depth: int) -> None:
        lo, hi = sorted((action.min, action.max))
        delay = lo if lo == hi else self._rng.randint(lo, hi)
        logger.debug("sleep_rand", min=lo, max=hi, delay=delay)
        await self.provider.sleep(delay)

    async def _run_focus_window(self, action: FocusWindowAction, ctx: ExecutionContext, depth: int) -> None:
        title = ctx.interp(action.title_contains)
        if not await self.provider.focus_window(title):
            logger.warning("focus_window_no_match", title_contains=title, workflow=ctx.workflow)

    async def _run_set_var(self, action: SetVarAction, ctx: ExecutionContext, depth: int) -> None:
        name = ctx.interp(action.name)
        value = ctx.interp(action.value)
        logger.debug("set_var", name=name, value=value)
        ctx.variables[name] = value

    async def _run_log(self, action: LogAction, ctx: ExecutionContext, depth: int) -> None:
        message = ctx.interp(action.message)
        level = action.level
        if level in (LogLevel.TRACE, LogLevel.DEBUG):
            logger.debug(message, workflow=ctx.workflow)
        elif level == LogLevel.INFO:
            logger.info(message, workflow=ctx.workflow)
        elif level == LogLevel.WARN:
            logger.warning(message, workflow=ctx.workflow)
        else:
            logger.error(message, workflow=ctx.workflow)

    async def _run_ocr_check(self, action: OcrCheckAction, ctx: ExecutionContext, depth: int) -> None:
        text = ctx.interp(action.must_contain)
        found = await self.provider.ocr_check(action.region, text)
        logger.debug("ocr_check", must_contain=text, found=found)
        if action.store_as:
            ctx.variables[ctx.interp(action.store_as)] = "true" if found else "false"

    async def _run_capture_screen(self, action: CaptureScreenAction, ctx: ExecutionContext, depth: int) -> None:
        await self.provider.capture_screen(ctx.interp(action.path), action.region)
