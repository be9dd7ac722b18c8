from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class Frame:
    """One captured camera frame plus capture metadata. Valid for a single tick."""
    image: np.ndarray
    sequence: int = 0
    timestamp: float = 0.0
    fps: float = 0.0

    @property
    def width(self) -> int:
        return int(self.image.shape[1]) if self.image is not None and self.image.ndim >= 2 else 0

    @property
    def height(self) -> int:
        return int(self.image.shape[0]) if self.image is not None and self.image.ndim >= 2 else 0

    @property
    def is_empty(self) -> bool:
        return self.image is None or self.image.size == 0
