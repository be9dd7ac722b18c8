from src.analysis.anomaly import AnomalyClassifier, DominantColorClassifier, create_classifier
from src.analysis.detection import (
    ColorRatioRule,
    DetectionRule,
    TemplateMatcher,
    TemplateRule,
    build_rule,
)
from src.analysis.profiles import PROFILES, build_state_graph
from src.analysis.state_tracker import StateTracker
