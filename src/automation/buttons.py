"""Console button names and helpers for parsing combo strings like 'L+R+START'."""
from __future__ import annotations

import logging
from enum import IntFlag

logger = logging.getLogger(__name__)


class Button(IntFlag):
    """Digital pad buttons, bit positions as reported by the console HID register."""
    NONE = 0
    A = 0x001
    B = 0x002
    SELECT = 0x004
    START = 0x008
    D_RIGHT = 0x010
    D_LEFT = 0x020
    D_UP = 0x040
    D_DOWN = 0x080
    R = 0x100
    L = 0x200
    X = 0x400
    Y = 0x800


class InterfaceButton(IntFlag):
    """System buttons sent outside the pad register."""
    NONE = 0
    HOME = 0x1
    POWER = 0x2
    POWER_LONG = 0x4


_BUTTON_ALIASES = {
    "up": "d_up",
    "down": "d_down",
    "left": "d_left",
    "right": "d_right",
    "dup": "d_up",
    "ddown": "d_down",
    "dleft": "d_left",
    "dright": "d_right",
    "dpad_up": "d_up",
    "dpad_down": "d_down",
    "dpad_left": "d_left",
    "dpad_right": "d_right",
    "power_long": "power_long",
    "powerlong": "power_long",
}


def normalize_button_token(token: str) -> str:
    """Normalize one button token to canonical lowercase ('D-Up' -> 'd_up')."""
    if not token:
        return ""
    t = str(token).strip().lower().replace("-", "_").replace(" ", "_")
    return _BUTTON_ALIASES.get(t, t)


def button_from_name(name: str) -> int:
    """Pad bit for ``name``; unknown names log a warning and give 0."""
    token = normalize_button_token(name)
    if not token:
        return 0
    member = Button.__members__.get(token.upper())
    if member is None or member is Button.NONE:
        logger.warning("Unknown button name '%s'; ignoring", name)
        return 0
    return int(member)


def parse_buttons(combo: str, strict: bool = False) -> tuple[int, int]:
    """Parse 'L+R+START' / 'HOME' into (pad mask, interface mask).

    Unknown tokens are logged and ignored, or raise ``ValueError`` when ``strict``.
    """
    pad = 0
    interface = 0
    for part in str(combo or "").split("+"):
        token = normalize_button_token(part)
        if not token:
            continue
        iface = InterfaceButton.__members__.get(token.upper())
        if iface is not None and iface is not InterfaceButton.NONE:
            interface |= int(iface)
            continue
        if strict and not is_button_name(token):
            raise ValueError(f"unknown button '{part.strip()}' in '{combo}'")
        pad |= button_from_name(token)
    return pad, interface


def is_button_name(name: str) -> bool:
    token = normalize_button_token(name)
    member = Button.__members__.get(token.upper())
    if member is not None and member is not Button.NONE:
        return True
    iface = InterfaceButton.__members__.get(token.upper())
    return iface is not None and iface is not InterfaceButton.NONE


def format_buttons(mask: int) -> str:
    """Render a pad mask as 'A+START' (empty string for no buttons)."""
    names = [b.name for b in Button if b is not Button.NONE and mask & b.value]
    return "+".join(names)
