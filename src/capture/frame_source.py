"""Frame sources: replay from a directory of images, a video file, or memory."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional, Sequence

import cv2
import numpy as np

from src.models import Frame

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp")


class FrameSource:
    """Base frame source. ``grab`` returns None when no frame is available right now."""

    def open(self) -> bool:
        raise NotImplementedError

    def grab(self) -> Optional[Frame]:
        raise NotImplementedError

    def is_open(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def seek(self, index: int) -> bool:
        """Jump to frame ``index``; False if the source cannot seek or the index is out of range."""
        return False

    def frame_count(self) -> int:
        """Total frames for replayable sources, -1 for live ones."""
        return -1

    def describe(self) -> str:
        return type(self).__name__


class ArrayFrameSource(FrameSource):
    """Replays an in-memory list of BGR images."""

    def __init__(self, images: Sequence[np.ndarray], fps: float = 0.0, loop: bool = False):
        self._images = list(images)
        self._fps = fps
        self._loop = loop
        self._index = 0
        self._open = False

    def open(self) -> bool:
        self._index = 0
        self._open = bool(self._images)
        return self._open

    def grab(self) -> Optional[Frame]:
        if not self.is_open():
            return None
        if self._index >= len(self._images):
            self._index = 0
        image = self._images[self._index]
        frame = Frame(image=image, sequence=self._index, timestamp=time.monotonic(), fps=self._fps)
        self._index += 1
        return frame

    def is_open(self) -> bool:
        return self._open and (self._loop or self._index < len(self._images))

    def close(self) -> None:
        self._open = False

    def seek(self, index: int) -> bool:
        if not 0 <= index < len(self._images):
            return False
        self._index = index
        return True

    def frame_count(self) -> int:
        return len(self._images)


class DirectoryFrameSource(FrameSource):
    """Replays image files from a directory in sorted filename order."""

    def __init__(self, directory: str | Path, playback_fps: float = 0.0, loop: bool = False):
        self._directory = Path(directory)
        self._fps = playback_fps
        self._loop = loop
        self._paths: list[Path] = []
        self._index = 0
        self._open = False

    def open(self) -> bool:
        if not self._directory.is_dir():
            logger.error("Frame directory does not exist: %s", self._directory)
            return False
        self._paths = sorted(
            p for p in self._directory.iterdir()
            if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
        )
        self._index = 0
        self._open = bool(self._paths)
        if not self._open:
            logger.error("No images found in %s", self._directory)
        else:
            logger.info("Replaying %d frames from %s", len(self._paths), self._directory)
        return self._open

    def grab(self) -> Optional[Frame]:
        if self._open and self._loop and self._index >= len(self._paths):
            self._index = 0
        if not self.is_open() or self._index >= len(self._paths):
            return None
        path = self._paths[self._index]
        image = cv2.imread(str(path), cv2.IMREAD_COLOR)
        index = self._index
        self._index += 1
        if image is None or image.size == 0:
            logger.warning("Failed to read image: %s", path)
            return None
        return Frame(image=image, sequence=index, timestamp=time.monotonic(), fps=self._fps)

    def is_open(self) -> bool:
        return self._open and (self._loop or self._index < len(self._paths))

    def close(self) -> None:
        self._paths = []
        self._index = 0
        self._open = False

    def seek(self, index: int) -> bool:
        if not 0 <= index < len(self._paths):
            return False
        self._index = index
        return True

    def frame_count(self) -> int:
        return len(self._paths)

    def describe(self) -> str:
        return f"DirectoryFrameSource({self._directory}, {len(self._paths)} frames)"


class VideoFrameSource(FrameSource):
    """Replays a video file through OpenCV."""

    def __init__(self, path: str | Path, playback_fps: float = 0.0, loop: bool = False):
        self._path = Path(path)
        self._fps = playback_fps
        self._loop = loop
        self._capture: Optional[cv2.VideoCapture] = None
        self._total = 0
        self._index = 0
        self._open = False

    def open(self) -> bool:
        if not self._path.exists():
            logger.error("Video file does not exist: %s", self._path)
            return False
        capture = cv2.VideoCapture(str(self._path))
        if not capture.isOpened():
            capture.release()
            logger.error("Failed to open video: %s", self._path)
            return False
        total = int(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        if total <= 0:
            capture.release()
            logger.error("Video reports no frames: %s", self._path)
            return False
        native_fps = float(capture.get(cv2.CAP_PROP_FPS) or 0.0)
        if self._fps <= 0:
            self._fps = native_fps
        self._capture = capture
        self._total = total
        self._index = 0
        self._open = True
        logger.info("Opened %s (%d frames, %.1f native FPS)", self._path, self._total, native_fps)
        return True

    def grab(self) -> Optional[Frame]:
        if self._open and self._loop and self._index >= self._total:
            self.seek(0)
        if not self.is_open() or self._capture is None or self._index >= self._total:
            return None
        ok, image = self._capture.read()
        index = self._index
        self._index += 1
        if not ok or image is None or image.size == 0:
            logger.warning("Failed to read video frame %d", index)
            return None
        if image.ndim != 3 or image.shape[2] not in (3, 4):
            logger.warning("Unexpected frame format at index %d: shape=%s", index, image.shape)
            return None
        return Frame(image=image, sequence=index, timestamp=time.monotonic(), fps=self._fps)

    def is_open(self) -> bool:
        return self._open and (self._loop or self._index < self._total)

    def close(self) -> None:
        if self._capture is not None:
            self._capture.release()
        self._capture = None
        self._total = 0
        self._index = 0
        self._open = False

    def seek(self, index: int) -> bool:
        if self._capture is None or not 0 <= index < self._total:
            return False
        if not self._capture.set(cv2.CAP_PROP_POS_FRAMES, float(index)):
            logger.warning("Failed to seek to frame %d", index)
            return False
        self._index = index
        return True

    def frame_count(self) -> int:
        return self._total

    def describe(self) -> str:
        return f"VideoFrameSource({self._path}, {self._total} frames)"
