"""Capability provider interface.

The interpreter never touches OS input handles directly; every effect goes
through a provider. Providers own whatever device/session state they need.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..workflow.models import MouseButton, Rect


class CapabilityProvider(ABC):
    """Input simulation, window and screen operations used by leaf actions."""

    name: str = "provider"

    @abstractmethod
    async def move_to(self, x: int, y: int) -> None:
        """Move the pointer to absolute screen coordinates."""

    @abstractmethod
    async def click(self, button: MouseButton, count: int) -> None:
        """Click ``button`` ``count`` times at the current position."""

    @abstractmethod
    async def scroll(self, dx: int, dy: int) -> None:
        """Scroll horizontally by ``dx`` and vertically by ``dy``."""

    @abstractmethod
    async def send_keys(self, text: str) -> None:
        """Send a key sequence (may contain special key tokens)."""

    @abstractmethod
    async def type_text(self, text: str) -> None:
        """Type literal text."""

    @abstractmethod
    async def sleep(self, ms: int) -> None:
        """Wait ``ms`` milliseconds."""

    @abstractmethod
    async def focus_window(self, title_contains: str) -> bool:
        """Focus a window whose title contains the substring. True if focused."""

    @abstractmethod
    async def ocr_check(self, region: Optional[Rect], must_contain: str) -> bool:
        """Return True if the text appears in the region (full screen if None)."""

    @abstractmethod
    async def capture_screen(self, path: str, region: Optional[Rect]) -> None:
        """Save a screenshot of the region (full screen if None) to ``path``."""

    async def close(self) -> None:
        """Release provider resources."""
