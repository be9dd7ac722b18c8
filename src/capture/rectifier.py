"""Perspective rectification of the console screens and ROI slicing."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional

import cv2
import numpy as np

from src.models import RoiDefinition, ScreenCorners, ScreenRole

logger = logging.getLogger(__name__)

CORNER_EPSILON = 0.01


@dataclass
class RectifiedFrame:
    """Warped screen images and their named regions for one tick."""
    top: np.ndarray
    bottom: Optional[np.ndarray] = None
    top_regions: dict[str, np.ndarray] = field(default_factory=dict)
    bottom_regions: dict[str, np.ndarray] = field(default_factory=dict)

    def region_sets(self) -> dict[str, dict[str, np.ndarray]]:
        """Per-screen region sets, keyed "top" / "bottom"; the bottom entry only when warped."""
        sets = {"top": self.top_regions}
        if self.bottom is not None:
            sets["bottom"] = self.bottom_regions
        return sets

    def find_region(self, name: str) -> Optional[np.ndarray]:
        """Region ``name`` from the top screen, else the bottom screen, else None."""
        if name in self.top_regions:
            return self.top_regions[name]
        return self.bottom_regions.get(name)


def _warp_matrix(corners: ScreenCorners, size: tuple[int, int]) -> np.ndarray:
    width, height = size
    dst = np.array(
        [[0.0, 0.0], [float(width), 0.0], [float(width), float(height)], [0.0, float(height)]],
        dtype=np.float32,
    )
    return cv2.getPerspectiveTransform(corners.as_array(), dst)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def extract_regions(image: np.ndarray, rois: Iterable[RoiDefinition]) -> dict[str, np.ndarray]:
    """Slice fractional ROIs out of ``image`` as independent copies. Empty ROIs are skipped."""
    height, width = image.shape[:2]
    regions: dict[str, np.ndarray] = {}
    for roi in rois:
        x = _round_half_up(roi.x * width)
        y = _round_half_up(roi.y * height)
        w = _round_half_up(roi.w * width)
        h = _round_half_up(roi.h * height)
        x = max(0, min(x, width - 1))
        y = max(0, min(y, height - 1))
        w = min(w, width - x)
        h = min(h, height - y)
        if w > 0 and h > 0:
            regions[roi.name] = image[y:y + h, x:x + w].copy()
    return regions


class FrameRectifier:
    """Warps raw frames into fixed-size top/bottom screen images.

    The warp for a screen is only recomputed when its corners move by more
    than ``CORNER_EPSILON``. Without top corners nothing is produced.
    """

    def __init__(
        self,
        rois: Iterable[RoiDefinition] = (),
        top_corners: Optional[ScreenCorners] = None,
        bottom_corners: Optional[ScreenCorners] = None,
    ):
        rois = list(rois)
        self._top_rois = [r for r in rois if r.screen == ScreenRole.TOP.value]
        self._bottom_rois = [r for r in rois if r.screen == ScreenRole.BOTTOM.value]
        self._top_size = ScreenRole.TOP.native_size
        self._bottom_size = ScreenRole.BOTTOM.native_size
        self._top_corners: Optional[ScreenCorners] = None
        self._bottom_corners: Optional[ScreenCorners] = None
        self._top_matrix: Optional[np.ndarray] = None
        self._bottom_matrix: Optional[np.ndarray] = None
        if top_corners is not None:
            self.set_top_corners(top_corners)
        if bottom_corners is not None:
            self.set_bottom_corners(bottom_corners)

    @property
    def top_corners(self) -> Optional[ScreenCorners]:
        return self._top_corners

    @property
    def bottom_corners(self) -> Optional[ScreenCorners]:
        return self._bottom_corners

    def has_transform(self) -> bool:
        return self._top_matrix is not None

    def has_bottom_transform(self) -> bool:
        return self._bottom_matrix is not None

    def set_top_corners(self, corners: ScreenCorners) -> None:
        if corners.close_to(self._top_corners, CORNER_EPSILON):
            return
        if corners.is_degenerate():
            logger.warning("Top screen corners are degenerate; ignoring")
            return
        self._top_corners = corners
        self._top_matrix = _warp_matrix(corners, self._top_size)

    def set_bottom_corners(self, corners: ScreenCorners) -> None:
        if corners.close_to(self._bottom_corners, CORNER_EPSILON):
            return
        if corners.is_degenerate():
            if self._bottom_matrix is not None or self._bottom_corners is None:
                logger.warning("Bottom screen corners are degenerate; disabling bottom screen")
            self.clear_bottom()
            return
        self._bottom_corners = corners
        self._bottom_matrix = _warp_matrix(corners, self._bottom_size)

    def clear_bottom(self) -> None:
        self._bottom_corners = None
        self._bottom_matrix = None

    def process(self, image: Optional[np.ndarray]) -> Optional[RectifiedFrame]:
        if image is None or image.size == 0 or self._top_matrix is None:
            return None
        if image.ndim == 3 and image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

        top = cv2.warpPerspective(image, self._top_matrix, self._top_size)
        result = RectifiedFrame(top=top, top_regions=extract_regions(top, self._top_rois))
        if self._bottom_matrix is not None:
            bottom = cv2.warpPerspective(image, self._bottom_matrix, self._bottom_size)
            result.bottom = bottom
            result.bottom_regions = extract_regions(bottom, self._bottom_rois)
        return result
