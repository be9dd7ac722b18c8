"""Anomaly ("shiny") classifiers run on the designated sprite region."""
from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from src.analysis.detection import hsv_in_range_fraction
from src.models import AnomalyResult, ClassifierConfig, ConfigError, Verdict

logger = logging.getLogger(__name__)


class AnomalyClassifier:
    """Base classifier. ``classify`` is stateless per call; ``reset`` clears any multi-frame memory."""

    method = ""

    def classify(self, image: Optional[np.ndarray]) -> AnomalyResult:
        raise NotImplementedError

    def classify_sequence(self, images: Sequence[np.ndarray]) -> AnomalyResult:
        """Majority vote over several frames; ties go to the earlier verdict (positive first)."""
        if not images:
            return AnomalyResult(Verdict.UNCERTAIN, 0.0, self.method, "")
        votes = {v: 0 for v in Verdict}
        confidence = {v: 0.0 for v in Verdict}
        for image in images:
            result = self.classify(image)
            votes[result.verdict] += 1
            confidence[result.verdict] += result.confidence
        winner = max(Verdict, key=lambda v: votes[v])
        count = votes[winner]
        return AnomalyResult(
            verdict=winner,
            confidence=confidence[winner] / count,
            method=self.method,
            details=f"sequence_majority_vote: count={count}/{len(images)}",
        )

    def reset(self) -> None:
        pass


def _ordered_range(lower, upper, name: str) -> tuple[tuple[int, ...], tuple[int, ...]]:
    lo = list(lower)
    hi = list(upper)
    for i in range(3):
        if lo[i] > hi[i]:
            lo[i], hi[i] = hi[i], lo[i]
    if hi[0] > 179:
        logger.warning("%s hue upper bound %d > 179; OpenCV hue range is 0-179", name, hi[0])
    return tuple(lo), tuple(hi)


class DominantColorClassifier(AnomalyClassifier):
    """Compares how much of the sprite falls in the normal vs. the shiny colour range."""

    method = "dominant_color"

    def __init__(self, config: ClassifierConfig):
        if config.shiny_ratio_threshold <= 0 or config.normal_ratio_threshold <= 0:
            raise ConfigError("classifier ratio thresholds must be positive")
        self._config = config
        self._normal = _ordered_range(config.normal_hsv_lower, config.normal_hsv_upper, "normal")
        self._shiny = _ordered_range(config.shiny_hsv_lower, config.shiny_hsv_upper, "shiny")

    def classify(self, image: Optional[np.ndarray]) -> AnomalyResult:
        if image is None or image.size == 0:
            return AnomalyResult(Verdict.UNCERTAIN, 0.0, self.method, "")

        normal_ratio = hsv_in_range_fraction(image, *self._normal)
        shiny_ratio = hsv_in_range_fraction(image, *self._shiny)
        details = f"normal={normal_ratio:.4f} shiny={shiny_ratio:.4f}"

        shiny_threshold = self._config.shiny_ratio_threshold
        normal_threshold = self._config.normal_ratio_threshold
        if shiny_ratio >= shiny_threshold and shiny_ratio > normal_ratio:
            return AnomalyResult(
                Verdict.POSITIVE, min(shiny_ratio / shiny_threshold, 1.0), self.method, details
            )
        if normal_ratio >= normal_threshold:
            return AnomalyResult(
                Verdict.NEGATIVE, min(normal_ratio / normal_threshold, 1.0), self.method, details
            )
        return AnomalyResult(Verdict.UNCERTAIN, 0.0, self.method, details)


def create_classifier(config: ClassifierConfig) -> AnomalyClassifier:
    if config.method == "dominant_color":
        return DominantColorClassifier(config)
    raise ConfigError(f"unknown classifier method '{config.method}'")
