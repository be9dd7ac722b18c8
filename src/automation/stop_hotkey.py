"""Global stop hotkey (works when the terminal does not have focus).

Uses the 'keyboard' library's low-level hook rather than add_hotkey so the key
is seen even while other keys are held. The library is optional at runtime:
when it is missing the listener logs a warning and does nothing.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

_KEY_ALIASES = {
    "esc": "escape",
    "return": "enter",
    "pgup": "page up",
    "pgdn": "page down",
    "del": "delete",
    "spacebar": "space",
}


def normalize_key_token(token: str) -> str:
    """Normalize one key name to canonical lowercase ('Page_Up' -> 'page up')."""
    if not token:
        return ""
    t = " ".join(str(token).strip().lower().replace("_", " ").split())
    return _KEY_ALIASES.get(t, t)


class StopHotkeyListener:
    """Calls ``on_stop`` once when ``key`` is pressed anywhere on the system."""

    def __init__(self, key: str, on_stop: Callable[[], None]):
        self._key = normalize_key_token(key)
        self._on_stop = on_stop
        self._hook = None
        self._fired = threading.Event()

    @property
    def key(self) -> str:
        return self._key

    def handle_key_down(self, name: Optional[str]) -> bool:
        """Fire ``on_stop`` if ``name`` is the stop key. Returns True when it fired."""
        if not self._key or self._fired.is_set():
            return False
        if normalize_key_token(name or "") != self._key:
            return False
        self._fired.set()
        logger.info("Stop hotkey '%s' pressed", self._key)
        self._on_stop()
        return True

    def start(self) -> bool:
        if not self._key:
            return False
        try:
            import keyboard
        except ImportError:
            logger.warning(
                "keyboard library not installed; stop hotkey disabled. "
                "Install with: pip install keyboard"
            )
            return False

        def on_event(event) -> None:
            if event.event_type == keyboard.KEY_DOWN:
                self.handle_key_down(getattr(event, "name", None))

        try:
            self._hook = keyboard.hook(on_event)
        except Exception as e:
            # keyboard needs root on Linux; the hunt continues without the hotkey
            logger.warning("Could not install stop hotkey '%s': %s", self._key, e)
            self._hook = None
            return False
        logger.info("Stop hotkey armed: %s", self._key)
        return True

    def stop(self) -> None:
        if self._hook is None:
            return
        try:
            import keyboard

            keyboard.unhook(self._hook)
        except Exception as e:
            logger.debug("keyboard unhook failed: %s", e)
        self._hook = None
