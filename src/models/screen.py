from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

TOP_SCREEN_WIDTH = 400
TOP_SCREEN_HEIGHT = 240
BOTTOM_SCREEN_WIDTH = 320
BOTTOM_SCREEN_HEIGHT = 240
TOP_ASPECT_RATIO = TOP_SCREEN_WIDTH / TOP_SCREEN_HEIGHT
BOTTOM_ASPECT_RATIO = BOTTOM_SCREEN_WIDTH / BOTTOM_SCREEN_HEIGHT

Point = tuple[float, float]


class ScreenRole(Enum):
    TOP = "top"
    BOTTOM = "bottom"

    @property
    def native_size(self) -> tuple[int, int]:
        """(width, height) of the rectified image for this screen."""
        if self is ScreenRole.TOP:
            return TOP_SCREEN_WIDTH, TOP_SCREEN_HEIGHT
        return BOTTOM_SCREEN_WIDTH, BOTTOM_SCREEN_HEIGHT


@dataclass(frozen=True)
class ScreenCorners:
    """Four corners of a screen in raw-frame pixels, ordered TL, TR, BR, BL."""
    tl: Point
    tr: Point
    br: Point
    bl: Point

    @classmethod
    def from_points(cls, points) -> ScreenCorners:
        pts = [(float(p[0]), float(p[1])) for p in points]
        if len(pts) != 4:
            raise ValueError(f"expected 4 corner points, got {len(pts)}")
        return cls(pts[0], pts[1], pts[2], pts[3])

    @classmethod
    def from_list(cls, data: list) -> ScreenCorners:
        """Build from a JSON list like [[x, y], [x, y], [x, y], [x, y]]."""
        return cls.from_points(data)

    def points(self) -> list[Point]:
        return [self.tl, self.tr, self.br, self.bl]

    def as_array(self) -> np.ndarray:
        return np.array(self.points(), dtype=np.float32)

    def is_degenerate(self) -> bool:
        return self.tl == self.tr == self.br == self.bl

    def center_y(self) -> float:
        return (self.tl[1] + self.br[1]) / 2.0

    def close_to(self, other: Optional[ScreenCorners], epsilon: float = 0.01) -> bool:
        """True if every coordinate differs from ``other`` by at most ``epsilon``."""
        if other is None:
            return False
        for a, b in zip(self.points(), other.points()):
            if abs(a[0] - b[0]) > epsilon or abs(a[1] - b[1]) > epsilon:
                return False
        return True

    def to_list(self) -> list[list[float]]:
        return [[x, y] for x, y in self.points()]


@dataclass(frozen=True)
class DetectedScreen:
    corners: ScreenCorners
    confidence: float = 0.0
    aspect_ratio: float = 0.0
    # True when the corners were carried over from an earlier frame
    held: bool = False


@dataclass(frozen=True)
class ScreenDetectionResult:
    top: Optional[DetectedScreen] = None
    bottom: Optional[DetectedScreen] = None

    @property
    def has_top(self) -> bool:
        return self.top is not None

    @property
    def has_bottom(self) -> bool:
        return self.bottom is not None

    @property
    def has_both(self) -> bool:
        return self.top is not None and self.bottom is not None

    @property
    def is_empty(self) -> bool:
        return self.top is None and self.bottom is None

    def screen_count(self) -> int:
        return int(self.has_top) + int(self.has_bottom)
