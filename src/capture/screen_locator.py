"""Screen locator: finds the console's top and bottom screens in a camera frame.

Pipeline per frame:
  grayscale -> blur -> binarize (Otsu, with a brightness floor for dark scenes)
  -> close/open -> external contours -> convex quads with a plausible aspect.

Single candidates are classified by a weighted vote of aspect ratio and
position against the split line remembered from earlier two-screen frames.
Corners are EMA-smoothed per screen and held briefly through detection gaps.
Once both screens have been seen in most of a rolling window the result is
locked and returned for every later frame without re-detecting.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from typing import TYPE_CHECKING, Optional

import cv2
import numpy as np

from src.models import (
    BOTTOM_ASPECT_RATIO,
    TOP_ASPECT_RATIO,
    DetectedScreen,
    LocatorConfig,
    ScreenCorners,
    ScreenDetectionResult,
)

if TYPE_CHECKING:
    from src.capture.rectifier import FrameRectifier

logger = logging.getLogger(__name__)

CALIBRATION_WINDOW_SIZE = 20
CALIBRATION_SUCCESS_RATE = 0.8


def order_corners(points: np.ndarray) -> ScreenCorners:
    """Order 4 points as TL, TR, BR, BL using the x+y and x-y extrema."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    sums = pts[:, 0] + pts[:, 1]
    diffs = pts[:, 0] - pts[:, 1]
    tl = pts[int(np.argmin(sums))]
    tr = pts[int(np.argmax(diffs))]
    br = pts[int(np.argmax(sums))]
    bl = pts[int(np.argmin(diffs))]
    return ScreenCorners.from_points([tl, tr, br, bl])


def corners_on_expected_sides(corners: ScreenCorners) -> bool:
    """False for quads rotated so far that a corner crosses the centroid."""
    pts = corners.points()
    cx = sum(p[0] for p in pts) / 4.0
    cy = sum(p[1] for p in pts) / 4.0
    tl, tr, br, bl = pts
    return (
        tl[0] < cx and tl[1] < cy
        and tr[0] > cx and tr[1] < cy
        and br[0] > cx and br[1] > cy
        and bl[0] < cx and bl[1] > cy
    )


def _edge_lengths(corners: ScreenCorners) -> tuple[float, float, float, float]:
    tl, tr, br, bl = (np.array(p) for p in corners.points())
    return (
        float(np.linalg.norm(tr - tl)),
        float(np.linalg.norm(br - bl)),
        float(np.linalg.norm(bl - tl)),
        float(np.linalg.norm(br - tr)),
    )


def aspect_ratio(corners: ScreenCorners) -> float:
    top_w, bottom_w, left_h, right_h = _edge_lengths(corners)
    avg_h = (left_h + right_h) / 2.0
    if avg_h < 1.0:
        return 0.0
    return ((top_w + bottom_w) / 2.0) / avg_h


class ScreenLocator:
    """Stateful screen detector. ``detect`` and ``reset`` are safe to call from two threads."""

    def __init__(self, config: Optional[LocatorConfig] = None):
        self._config = config or LocatorConfig()
        self._lock = threading.Lock()
        self._smoothed: dict[str, Optional[ScreenCorners]] = {"top": None, "bottom": None}
        self._frames_since_seen: dict[str, int] = {"top": 0, "bottom": 0}
        self._split_y = -1.0
        self._window: deque[bool] = deque(maxlen=CALIBRATION_WINDOW_SIZE)
        self._calibrated = False
        self._calibrated_result = ScreenDetectionResult()

    @property
    def config(self) -> LocatorConfig:
        return self._config

    def detect_once(self, image: Optional[np.ndarray]) -> ScreenDetectionResult:
        """Detect without smoothing or calibration. Touches no instance state."""
        if image is None or image.size == 0:
            return ScreenDetectionResult()
        return self._classify(self._find_candidates(image), self._split_y)

    def detect(self, image: Optional[np.ndarray]) -> ScreenDetectionResult:
        with self._lock:
            if self._calibrated:
                return self._calibrated_result
            if image is None or image.size == 0:
                return ScreenDetectionResult()

            raw = self._classify(self._find_candidates(image), self._split_y)
            result = ScreenDetectionResult(
                top=self._smooth("top", raw.top),
                bottom=self._smooth("bottom", raw.bottom),
            )

            if result.has_both:
                self._split_y = (result.top.corners.center_y() + result.bottom.corners.center_y()) / 2.0

            both = result.has_both
            self._window.append(both)
            needed = min(self._config.calibration_frames, CALIBRATION_WINDOW_SIZE)
            if len(self._window) >= needed:
                rate = sum(self._window) / len(self._window)
                if both and rate >= CALIBRATION_SUCCESS_RATE:
                    self._calibrated = True
                    self._calibrated_result = result
                    logger.info(
                        "Screen detection calibrated (%.0f%% success over %d frames)",
                        rate * 100.0,
                        len(self._window),
                    )
                    logger.info("  top corners: %s", result.top.corners.to_list())
                    logger.info("  bottom corners: %s", result.bottom.corners.to_list())
            return result

    def apply_to(self, rectifier: FrameRectifier, image: Optional[np.ndarray]) -> ScreenDetectionResult:
        """Detect and push any found corners into ``rectifier``."""
        result = self.detect(image)
        if result.top is not None:
            rectifier.set_top_corners(result.top.corners)
        if result.bottom is not None:
            rectifier.set_bottom_corners(result.bottom.corners)
        return result

    def is_calibrated(self) -> bool:
        with self._lock:
            return self._calibrated

    def reset(self) -> None:
        with self._lock:
            self._smoothed = {"top": None, "bottom": None}
            self._frames_since_seen = {"top": 0, "bottom": 0}
            self._split_y = -1.0
            self._window.clear()
            self._calibrated = False
            self._calibrated_result = ScreenDetectionResult()

    def _find_candidates(self, image: np.ndarray) -> list[DetectedScreen]:
        cfg = self._config
        if image.ndim == 3:
            code = cv2.COLOR_BGRA2GRAY if image.shape[2] == 4 else cv2.COLOR_BGR2GRAY
            gray = cv2.cvtColor(image, code)
        else:
            gray = image
        blurred = cv2.GaussianBlur(gray, (5, 5), 0)
        otsu, binary = cv2.threshold(blurred, 0, 255, cv2.THRESH_BINARY | cv2.THRESH_OTSU)
        if otsu < cfg.brightness_threshold:
            _, binary = cv2.threshold(blurred, cfg.brightness_threshold, 255, cv2.THRESH_BINARY)

        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (cfg.morph_kernel_size, cfg.morph_kernel_size))
        cleaned = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)
        cleaned = cv2.morphologyEx(cleaned, cv2.MORPH_OPEN, kernel)
        contours, _ = cv2.findContours(cleaned, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        frame_area = float(gray.shape[0] * gray.shape[1])
        min_area = cfg.min_area_fraction * frame_area
        max_area = cfg.max_area_fraction * frame_area

        candidates: list[DetectedScreen] = []
        for contour in contours:
            area = cv2.contourArea(contour)
            if area < min_area or area > max_area:
                continue
            approx = cv2.approxPolyDP(contour, cfg.poly_epsilon * cv2.arcLength(contour, True), True)
            if len(approx) != 4 or not cv2.isContourConvex(approx):
                continue
            corners = order_corners(approx)
            if not corners_on_expected_sides(corners):
                continue
            ratio = aspect_ratio(corners)
            top_diff = abs(ratio - TOP_ASPECT_RATIO)
            bottom_diff = abs(ratio - BOTTOM_ASPECT_RATIO)
            if top_diff > cfg.aspect_tolerance and bottom_diff > cfg.aspect_tolerance:
                continue
            candidates.append(
                DetectedScreen(
                    corners=corners,
                    confidence=self._confidence(corners, ratio),
                    aspect_ratio=ratio,
                )
            )

        if not candidates:
            logger.debug(
                "No screen candidates (otsu=%.0f, floor=%d)", otsu, cfg.brightness_threshold
            )
        return candidates

    def _confidence(self, corners: ScreenCorners, ratio: float) -> float:
        best_diff = min(abs(ratio - TOP_ASPECT_RATIO), abs(ratio - BOTTOM_ASPECT_RATIO))
        confidence = 1.0 - best_diff / (self._config.aspect_tolerance * 2.0)
        confidence = min(1.0, max(0.0, confidence))

        top_w, bottom_w, left_h, right_h = _edge_lengths(corners)
        max_w = max(top_w, bottom_w)
        max_h = max(left_h, right_h)
        if max_w < 1.0 or max_h < 1.0:
            return 0.0
        # penalize skew: parallel edges of a head-on rectangle have equal length
        skew = (min(top_w, bottom_w) / max_w + min(left_h, right_h) / max_h) / 2.0
        return confidence * skew

    @staticmethod
    def _classify(candidates: list[DetectedScreen], split_y: float) -> ScreenDetectionResult:
        if not candidates:
            return ScreenDetectionResult()
        if len(candidates) > 2:
            logger.warning("%d screen candidates found; keeping the 2 most confident", len(candidates))
            candidates = sorted(candidates, key=lambda c: c.confidence, reverse=True)[:2]
        candidates = sorted(candidates, key=lambda c: c.corners.center_y())

        if len(candidates) == 2:
            return ScreenDetectionResult(top=candidates[0], bottom=candidates[1])

        only = candidates[0]
        top_diff = abs(only.aspect_ratio - TOP_ASPECT_RATIO)
        bottom_diff = abs(only.aspect_ratio - BOTTOM_ASPECT_RATIO)
        score = 0.0
        if top_diff < bottom_diff:
            score += 1.0
        elif bottom_diff < top_diff:
            score -= 1.0
        if split_y > 0.0:
            score += 2.0 if only.corners.center_y() < split_y else -2.0
        if score >= 0.0:
            return ScreenDetectionResult(top=only)
        return ScreenDetectionResult(bottom=only)

    def _smooth(self, role: str, screen: Optional[DetectedScreen]) -> Optional[DetectedScreen]:
        window = self._config.smoothing_window
        alpha = min(1.0, max(0.0, 2.0 / (window + 1)))
        previous = self._smoothed[role]

        if screen is not None:
            self._frames_since_seen[role] = 0
            if previous is None:
                smoothed = screen.corners
            else:
                smoothed = ScreenCorners.from_points(
                    [
                        (alpha * new[0] + (1.0 - alpha) * old[0], alpha * new[1] + (1.0 - alpha) * old[1])
                        for new, old in zip(screen.corners.points(), previous.points())
                    ]
                )
            self._smoothed[role] = smoothed
            return DetectedScreen(
                corners=smoothed,
                confidence=screen.confidence,
                aspect_ratio=screen.aspect_ratio,
            )

        self._frames_since_seen[role] += 1
        if self._frames_since_seen[role] > window:
            self._smoothed[role] = None
            return None
        if previous is None:
            return None
        return DetectedScreen(
            corners=previous,
            confidence=0.0,
            aspect_ratio=aspect_ratio(previous),
            held=True,
        )
