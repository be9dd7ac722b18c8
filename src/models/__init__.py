from src.models.config import (
    AppConfig,
    BoundingBox,
    ClassifierConfig,
    ConfigError,
    ConsoleConfig,
    DetectionParams,
    FsmConfig,
    HuntConfig,
    InputAction,
    LocatorConfig,
    OrchestratorConfig,
    RecoveryPolicy,
    RoiDefinition,
    ScreensConfig,
    SourceConfig,
    StateConfig,
)
from src.models.frame import Frame
from src.models.input import AnalogStick, InputCommand, TouchPoint
from src.models.screen import (
    BOTTOM_ASPECT_RATIO,
    BOTTOM_SCREEN_HEIGHT,
    BOTTOM_SCREEN_WIDTH,
    TOP_ASPECT_RATIO,
    TOP_SCREEN_HEIGHT,
    TOP_SCREEN_WIDTH,
    DetectedScreen,
    ScreenCorners,
    ScreenDetectionResult,
    ScreenRole,
)
from src.models.state import (
    DEFAULT_MAX_DWELL_S,
    ActionType,
    AnomalyResult,
    Decision,
    HuntStatistics,
    StateDefinition,
    StateGraph,
    StateTransition,
    Verdict,
)
