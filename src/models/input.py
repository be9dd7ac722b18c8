from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AnalogStick:
    """Stick deflection, each axis in [-1.0, 1.0]."""
    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class TouchPoint:
    """Bottom-screen touch in native pixels (0-319, 0-239)."""
    x: int = 0
    y: int = 0
    active: bool = False


@dataclass(frozen=True)
class InputCommand:
    """Logical controller state to apply until the next command or release."""
    buttons: int = 0
    circle_pad: AnalogStick = field(default_factory=AnalogStick)
    c_stick: AnalogStick = field(default_factory=AnalogStick)
    touch: TouchPoint = field(default_factory=TouchPoint)
    interface_buttons: int = 0

    @property
    def is_neutral(self) -> bool:
        return self == InputCommand()
