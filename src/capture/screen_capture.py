"""Live frames from a region of a desktop monitor (e.g. a capture-card preview window)."""
from __future__ import annotations

import logging
import time
from typing import Optional

import mss
import numpy as np

from src.capture.frame_source import FrameSource
from src.models import BoundingBox, Frame

logger = logging.getLogger(__name__)


def list_monitors() -> list[dict]:
    """mss monitor geometry; index 0 is the union of all monitors."""
    with mss.mss() as sct:
        return list(sct.monitors)


class ScreenCaptureSource(FrameSource):
    """Grabs ``bounding_box`` from monitor ``monitor_index`` using mss."""

    def __init__(self, monitor_index: int = 1, bounding_box: Optional[BoundingBox] = None):
        self._monitor_index = monitor_index
        self._bbox = bounding_box or BoundingBox()
        self._sct = None
        self._region: Optional[dict] = None
        self._sequence = 0
        self._last_grab = 0.0
        self._fps = 0.0

    def open(self) -> bool:
        try:
            self._sct = mss.mss()
        except Exception as e:
            logger.error("Screen capture unavailable: %s", e)
            self._sct = None
            return False
        monitors = self._sct.monitors
        if not 0 <= self._monitor_index < len(monitors):
            logger.error(
                "Monitor %d not found (%d available)", self._monitor_index, len(monitors) - 1
            )
            self.close()
            return False
        monitor = monitors[self._monitor_index]
        self._region = self._bbox.as_mss_region(monitor["left"], monitor["top"])
        logger.info("Capturing monitor %d region %s", self._monitor_index, self._region)
        return True

    def grab(self) -> Optional[Frame]:
        if self._sct is None or self._region is None:
            return None
        try:
            shot = self._sct.grab(self._region)
        except Exception as e:
            logger.warning("Screen grab failed: %s", e)
            return None
        # mss returns BGRA
        image = np.ascontiguousarray(np.array(shot, dtype=np.uint8)[:, :, :3])
        now = time.monotonic()
        if self._last_grab:
            dt = now - self._last_grab
            if dt > 0:
                self._fps = 0.9 * self._fps + 0.1 * (1.0 / dt) if self._fps else 1.0 / dt
        self._last_grab = now
        frame = Frame(image=image, sequence=self._sequence, timestamp=now, fps=self._fps)
        self._sequence += 1
        return frame

    def is_open(self) -> bool:
        return self._sct is not None

    def close(self) -> None:
        if self._sct is not None:
            try:
                self._sct.close()
            except Exception as e:
                logger.debug("mss close failed: %s", e)
        self._sct = None

    def describe(self) -> str:
        return f"ScreenCaptureSource(monitor={self._monitor_index}, region={self._bbox.to_dict()})"
