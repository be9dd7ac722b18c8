from src.capture.frame_source import (
    ArrayFrameSource,
    DirectoryFrameSource,
    FrameSource,
    VideoFrameSource,
)
from src.capture.rectifier import FrameRectifier, RectifiedFrame, extract_regions
from src.capture.screen_locator import ScreenLocator
from src.capture.screen_capture import ScreenCaptureSource, list_monitors
