"""Per-state detection rules, resolved from config once and scored every tick."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Optional

import cv2
import numpy as np

from src.models import ConfigError, DetectionParams

logger = logging.getLogger(__name__)


def to_bgr(image: np.ndarray) -> np.ndarray:
    """Return a 3-channel BGR view/copy of a gray, BGR or BGRA image."""
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    return image


def to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 2:
        return image
    code = cv2.COLOR_BGRA2GRAY if image.shape[2] == 4 else cv2.COLOR_BGR2GRAY
    return cv2.cvtColor(image, code)


def hsv_in_range_fraction(image: np.ndarray, lower, upper) -> float:
    """Fraction of pixels whose HSV value lies inside [lower, upper] (inclusive)."""
    if image is None or image.size == 0:
        return 0.0
    hsv = cv2.cvtColor(to_bgr(image), cv2.COLOR_BGR2HSV)
    mask = cv2.inRange(hsv, np.array(lower, dtype=np.uint8), np.array(upper, dtype=np.uint8))
    return float(cv2.countNonZero(mask)) / float(mask.shape[0] * mask.shape[1])


def window_confidence(fraction: float, low: float, high: float) -> float:
    """1.0 at the window midpoint, about 0.5 at its edges, 0.0 outside it."""
    if fraction < low or fraction > high:
        return 0.0
    half = (high - low) / 2.0
    if half <= 0.0:
        return 1.0
    mid = (low + high) / 2.0
    return max(0.0, min(1.0, 1.0 - 0.5 * (abs(fraction - mid) / half)))


class TemplateMatcher:
    """Loads reference images once and caches them resized to each ROI size."""

    def __init__(self) -> None:
        self._originals: dict[str, Optional[np.ndarray]] = {}
        self._resized: dict[tuple[str, int, int], np.ndarray] = {}

    def preload(self, keys: Iterable[str]) -> list[str]:
        """Read every reference up front. Returns the keys that could not be loaded."""
        return [key for key in dict.fromkeys(keys) if self._load(key) is None]

    def _load(self, key: str) -> Optional[np.ndarray]:
        if key not in self._originals:
            image = cv2.imread(key, cv2.IMREAD_COLOR)
            if image is None or image.size == 0:
                logger.warning("Template image not found or unreadable: %s", key)
                self._originals[key] = None
            else:
                self._originals[key] = to_gray(image)
        return self._originals[key]

    def reference(self, key: str, width: int, height: int) -> Optional[np.ndarray]:
        cache_key = (key, width, height)
        cached = self._resized.get(cache_key)
        if cached is not None:
            return cached
        original = self._load(key)
        if original is None:
            return None
        if original.shape[1] != width or original.shape[0] != height:
            resized = cv2.resize(original, (width, height), interpolation=cv2.INTER_AREA)
        else:
            resized = original
        self._resized[cache_key] = resized
        return resized

    def score(self, image: np.ndarray, key: str) -> float:
        """Normalized cross-correlation of ``image`` against reference ``key``, in [0, 1]."""
        if image is None or image.size == 0:
            return 0.0
        gray = to_gray(image)
        ref = self.reference(key, gray.shape[1], gray.shape[0])
        if ref is None:
            return 0.0
        result = cv2.matchTemplate(gray, ref, cv2.TM_CCORR_NORMED)
        value = float(result[0, 0]) if result.size else 0.0
        if not math.isfinite(value):
            return 0.0
        return max(0.0, min(1.0, value))


@dataclass(frozen=True)
class DetectionRule:
    roi: str
    threshold: float

    def score(self, image: np.ndarray) -> float:
        raise NotImplementedError


@dataclass(frozen=True)
class ColorRatioRule(DetectionRule):
    """``color_histogram`` / ``pixel_ratio``: share of in-range HSV pixels must sit in a window."""
    hsv_lower: tuple[int, int, int] = (0, 0, 0)
    hsv_upper: tuple[int, int, int] = (179, 255, 255)
    ratio_min: float = 0.0
    ratio_max: float = 1.0

    def score(self, image: np.ndarray) -> float:
        fraction = hsv_in_range_fraction(image, self.hsv_lower, self.hsv_upper)
        return window_confidence(fraction, self.ratio_min, self.ratio_max)


@dataclass(frozen=True)
class TemplateRule(DetectionRule):
    template_path: str = ""
    matcher: Optional[TemplateMatcher] = None

    def score(self, image: np.ndarray) -> float:
        if self.matcher is None:
            return 0.0
        return self.matcher.score(image, self.template_path)


def build_rule(params: DetectionParams, matcher: Optional[TemplateMatcher] = None) -> DetectionRule:
    if params.method in ("color_histogram", "pixel_ratio"):
        return ColorRatioRule(
            roi=params.roi,
            threshold=params.threshold,
            hsv_lower=tuple(params.hsv_lower),
            hsv_upper=tuple(params.hsv_upper),
            ratio_min=params.pixel_ratio_min,
            ratio_max=params.pixel_ratio_max,
        )
    if params.method == "template_match":
        return TemplateRule(
            roi=params.roi,
            threshold=params.threshold,
            template_path=params.template_path,
            matcher=matcher or TemplateMatcher(),
        )
    raise ConfigError(f"unknown detection method '{params.method}'")
