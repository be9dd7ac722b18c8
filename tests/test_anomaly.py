import unittest

import numpy as np

from src.analysis.anomaly import DominantColorClassifier, create_classifier
from src.models import ClassifierConfig, ConfigError, Verdict

# Froakie-style palette: blue-green normal, orange-ish shiny
CONFIG = ClassifierConfig(
    normal_hsv_lower=(35, 80, 80),
    normal_hsv_upper=(85, 255, 255),
    shiny_hsv_lower=(10, 80, 80),
    shiny_hsv_upper=(30, 255, 255),
    normal_ratio_threshold=0.2,
    shiny_ratio_threshold=0.2,
)

GREEN = (0, 200, 0)  # hue 60
ORANGE = (0, 128, 255)  # hue 15
GRAY = (128, 128, 128)


def sprite(color, fraction: float = 1.0) -> np.ndarray:
    image = np.zeros((50, 50, 3), dtype=np.uint8)
    rows = int(round(50 * fraction))
    image[:rows] = color
    return image


class DominantColorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.classifier = DominantColorClassifier(CONFIG)

    def test_shiny_palette_is_positive(self) -> None:
        result = self.classifier.classify(sprite(ORANGE))
        self.assertIs(result.verdict, Verdict.POSITIVE)
        self.assertEqual(result.confidence, 1.0)
        self.assertEqual(result.method, "dominant_color")
        self.assertIn("shiny=1.0000", result.details)

    def test_normal_palette_is_negative(self) -> None:
        result = self.classifier.classify(sprite(GREEN))
        self.assertIs(result.verdict, Verdict.NEGATIVE)

    def test_confidence_scales_with_ratio(self) -> None:
        result = self.classifier.classify(sprite(GREEN, 0.1))
        self.assertIs(result.verdict, Verdict.UNCERTAIN)
        result = self.classifier.classify(sprite(ORANGE, 0.3))
        self.assertIs(result.verdict, Verdict.POSITIVE)
        self.assertEqual(result.confidence, 1.0)

    def test_neither_palette_is_uncertain(self) -> None:
        self.assertIs(self.classifier.classify(sprite(GRAY)).verdict, Verdict.UNCERTAIN)

    def test_empty_image_is_uncertain(self) -> None:
        self.assertIs(self.classifier.classify(None).verdict, Verdict.UNCERTAIN)
        empty = np.zeros((0, 0, 3), dtype=np.uint8)
        self.assertIs(self.classifier.classify(empty).verdict, Verdict.UNCERTAIN)

    def test_more_normal_than_shiny_is_negative(self) -> None:
        image = sprite(GREEN)
        image[:20] = ORANGE
        self.assertIs(self.classifier.classify(image).verdict, Verdict.NEGATIVE)

    def test_inverted_bounds_are_reordered(self) -> None:
        swapped = ClassifierConfig(
            normal_hsv_lower=(85, 255, 255),
            normal_hsv_upper=(35, 80, 80),
            shiny_hsv_lower=(30, 255, 255),
            shiny_hsv_upper=(10, 80, 80),
            normal_ratio_threshold=0.2,
            shiny_ratio_threshold=0.2,
        )
        classifier = DominantColorClassifier(swapped)
        self.assertIs(classifier.classify(sprite(ORANGE)).verdict, Verdict.POSITIVE)

    def test_hue_above_opencv_range_warns(self) -> None:
        config = ClassifierConfig(shiny_hsv_lower=(170, 0, 0), shiny_hsv_upper=(200, 255, 255))
        with self.assertLogs("src.analysis.anomaly", level="WARNING"):
            DominantColorClassifier(config)

    def test_non_positive_threshold_is_rejected(self) -> None:
        with self.assertRaises(ConfigError):
            DominantColorClassifier(ClassifierConfig(shiny_ratio_threshold=0.0))


class SequenceVoteTests(unittest.TestCase):
    def setUp(self) -> None:
        self.classifier = create_classifier(CONFIG)

    def test_majority_wins(self) -> None:
        result = self.classifier.classify_sequence(
            [sprite(GREEN), sprite(ORANGE), sprite(GREEN)]
        )
        self.assertIs(result.verdict, Verdict.NEGATIVE)
        self.assertIn("count=2/3", result.details)

    def test_tie_goes_to_positive(self) -> None:
        result = self.classifier.classify_sequence([sprite(GREEN), sprite(ORANGE)])
        self.assertIs(result.verdict, Verdict.POSITIVE)

    def test_empty_sequence_is_uncertain(self) -> None:
        self.assertIs(self.classifier.classify_sequence([]).verdict, Verdict.UNCERTAIN)


if __name__ == "__main__":
    unittest.main()
