"""
Desktop provider backed by pynput.

- Mouse and keyboard go through pynput controllers, created lazily on first
  use; importing this module needs no display.
- Window focus uses pywinauto on Windows; elsewhere it reports False.
- OCR and screen capture are placeholders that log and return fixed results.

Blocking backend calls run in a worker thread.
"""

import asyncio
import sys
from typing import Any, Optional

import structlog

from ..core.errors import CapabilityError
from ..workflow.models import MouseButton, Rect
from .base import CapabilityProvider


logger = structlog.get_logger()

# Special keys accepted inside key sequences, e.g. "{CTRL}c" or "abc{ENTER}"
SPECIAL_KEYS = {
    "ENTER": "enter",
    "RETURN": "enter",
    "TAB": "tab",
    "ESC": "esc",
    "ESCAPE": "esc",
    "BACKSPACE": "backspace",
    "DELETE": "delete",
    "HOME": "home",
    "END": "end",
    "PAGE_UP": "page_up",
    "PAGE_DOWN": "page_down",
    "UP": "up",
    "DOWN": "down",
    "LEFT": "left",
    "RIGHT": "right",
    "SPACE": "space",
    "WIN": "cmd",
    "CMD": "cmd",
    "CTRL": "ctrl",
    "ALT": "alt",
    "SHIFT": "shift",
    "F1": "f1", "F2": "f2", "F3": "f3", "F4": "f4", "F5": "f5", "F6": "f6",
    "F7": "f7", "F8": "f8", "F9": "f9", "F10": "f10", "F11": "f11", "F12": "f12",
}

# Keys held down until the next regular key is sent
MODIFIERS = {"ctrl", "alt", "shift", "cmd"}


def tokenize_keys(sequence: str) -> list[str]:
    """
    Split a key sequence into literal text chunks and ``{KEY}`` tokens.

    Braces that do not enclose a known key name are kept as literal text.
    """
    out: list[str] = []
    buf = ""
    i = 0
    while i < len(sequence):
        ch = sequence[i]
        if ch == "{":
            end = sequence.find("}", i + 1)
            name = sequence[i + 1:end].upper() if end > 0 else ""
            if name in SPECIAL_KEYS:
                if buf:
                    out.append(buf)
                    buf = ""
                out.append("{" + name + "}")
                i = end + 1
                continue
        buf += ch
        i += 1
    if buf:
        out.append(buf)
    return out


class DesktopProvider(CapabilityProvider):
    """Real input simulation on the local desktop."""

    name = "desktop"

    def __init__(self, char_delay_ms: int = 10):
        self.char_delay_ms = char_delay_ms
        self._mouse: Any = None
        self._keyboard: Any = None
        self._button_mod: Any = None
        self._key_mod: Any = None
        self._lock = asyncio.Lock()

    async def _ensure_controllers(self) -> None:
        """Create pynput controllers on first use."""
        async with self._lock:
            if self._mouse is not None:
                return
            try:
                from pynput.keyboard import Controller as KeyboardController, Key
                from pynput.mouse import Controller as MouseController, Button
            except Exception as e:
                raise CapabilityError(
                    f"pynput backend unavailable: {e}",
                    operation="initialize",
                ) from e

            logger.debug("desktop_provider_initializing")
            self._mouse = MouseController()
            self._keyboard = KeyboardController()
            self._button_mod = Button
            self._key_mod = Key

    async def _call(self, operation: str, func, *args) -> Any:
        await self._ensure_controllers()
        try:
            return await asyncio.to_thread(func, *args)
        except CapabilityError:
            raise
        except Exception as e:
            raise CapabilityError(f"{operation} failed: {e}", operation=operation) from e

    async def move_to(self, x: int, y: int) -> None:
        def _move():
            self._mouse.position = (int(x), int(y))

        await self._call("move_to", _move)

    async def click(self, button: MouseButton, count: int) -> None:
        def _click():
            btn = getattr(self._button_mod, MouseButton(button).value)
            self._mouse.click(btn, max(1, int(count)))

        await self._call("click", _click)

    async def scroll(self, dx: int, dy: int) -> None:
        def _scroll():
            self._mouse.scroll(int(dx), int(dy))

        await self._call("scroll", _scroll)

    async def send_keys(self, text: str) -> None:
        if not text:
            return

        def _send():
            held: list[Any] = []
            for token in tokenize_keys(text):
                if token.startswith("{") and token.endswith("}"):
                    key_name = SPECIAL_KEYS[token[1:-1]]
                    key = getattr(self._key_mod, key_name)
                    if key_name in MODIFIERS:
                        self._keyboard.press(key)
                        held.append(key)
                        continue
                    self._keyboard.press(key)
                    self._keyboard.release(key)
                else:
                    for ch in token:
                        self._keyboard.press(ch)
                        self._keyboard.release(ch)
                for key in reversed(held):
                    self._keyboard.release(key)
                held.clear()
            for key in reversed(held):
                self._keyboard.release(key)

        await self._call("send_keys", _send)

    async def type_text(self, text: str) -> None:
        if not text:
            return
        await self._ensure_controllers()
        for ch in text:
            await self._call("type_text", self._keyboard.type, ch)
            if self.char_delay_ms:
                await asyncio.sleep(self.char_delay_ms / 1000.0)

    async def sleep(self, ms: int) -> None:
        await asyncio.sleep(max(ms, 0) / 1000.0)

    async def focus_window(self, title_contains: str) -> bool:
        if not title_contains:
            return False
        if not sys.platform.startswith("win"):
            logger.warning(
                "focus_window_unsupported",
                platform=sys.platform,
                title_contains=title_contains,
            )
            return False

        def _focus() -> bool:
            import re
            from pywinauto import Application
            from pywinauto.findwindows import ElementNotFoundError

            pattern = f".*{re.escape(title_contains)}.*"
            try:
                app = Application(backend="uia").connect(title_re=pattern)
            except ElementNotFoundError:
                return False
            win = app.top_window()
            if win.is_minimized():
                win.restore()
            win.set_focus()
            return True

        try:
            return await asyncio.to_thread(_focus)
        except Exception as e:
            raise CapabilityError(
                f"focus_window({title_contains}) failed: {e}",
                operation="focus_window",
            ) from e

    async def ocr_check(self, region: Optional[Rect], must_contain: str) -> bool:
        logger.warning(
            "ocr_check_not_implemented",
            region=region.model_dump() if region else None,
            must_contain=must_contain,
        )
        return False

    async def capture_screen(self, path: str, region: Optional[Rect]) -> None:
        logger.warning(
            "capture_screen_not_implemented",
            path=path,
            region=region.model_dump() if region else None,
        )
