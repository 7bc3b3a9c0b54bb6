"""Dry-run provider: records and logs every call, performs nothing."""

from typing import Any, Optional

import structlog

from ..workflow.models import MouseButton, Rect
from .base import CapabilityProvider


logger = structlog.get_logger()


class DryRunProvider(CapabilityProvider):
    """
    Provider that only logs the would-be invocation.

    Every call is appended to ``calls`` as ``(operation, args)`` so tests can
    assert on what a workflow would have done. Queries report success.
    """

    name = "dry_run"

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def _record(self, operation: str, **args: Any) -> None:
        self.calls.append((operation, args))
        logger.info("dry_run_" + operation, **args)

    def operations(self) -> list[str]:
        """Names of recorded operations, in call order."""
        return [op for op, _ in self.calls]

    def clear(self) -> None:
        self.calls.clear()

    async def move_to(self, x: int, y: int) -> None:
        self._record("move_to", x=x, y=y)

    async def click(self, button: MouseButton, count: int) -> None:
        self._record("click", button=MouseButton(button).value, count=count)

    async def scroll(self, dx: int, dy: int) -> None:
        self._record("scroll", dx=dx, dy=dy)

    async def send_keys(self, text: str) -> None:
        self._record("send_keys", text=text)

    async def type_text(self, text: str) -> None:
        self._record("type_text", text=text)

    async def sleep(self, ms: int) -> None:
        self._record("sleep", ms=ms)

    async def focus_window(self, title_contains: str) -> bool:
        self._record("focus_window", title_contains=title_contains)
        return True

    async def ocr_check(self, region: Optional[Rect], must_contain: str) -> bool:
        self._record(
            "ocr_check",
            region=region.model_dump() if region else None,
            must_contain=must_contain,
        )
        return True

    async def capture_screen(self, path: str, region: Optional[Rect]) -> None:
        self._record(
            "capture_screen",
            path=path,
            region=region.model_dump() if region else None,
        )
