"""
Bounded ring buffer of processed frames.

Only the newest ``capacity`` frames are held; with the default capacity of 2
that is exactly the current frame and the one it is matched against. Frames
returned by :meth:`FrameBuffer.current` and :meth:`FrameBuffer.previous` are
only valid until the next :meth:`FrameBuffer.push`.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional

import cv2
import numpy as np

from .tracking.errors import ConfigurationError

LOGGER = logging.getLogger(__name__)


@dataclass
class Frame:
    """A buffered image with its keypoints, descriptors and matches."""

    image: np.ndarray
    frame_index: int = 0
    keypoints: List[cv2.KeyPoint] = field(default_factory=list)
    descriptors: Optional[np.ndarray] = None
    # queryIdx -> this frame, trainIdx -> previous frame
    matches: List[cv2.DMatch] = field(default_factory=list)


class FrameBuffer:
    """Ring buffer holding at most ``capacity`` frames, oldest first."""

    def __init__(self, capacity: int = 2):
        if capacity < 1:
            raise ConfigurationError(f"Frame buffer capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._frames: Deque[Frame] = deque()
        self._pushed = 0

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self):
        return iter(self._frames)

    def push(self, image: np.ndarray) -> Frame:
        """Append a frame for ``image``, evicting the oldest when over capacity."""
        frame = Frame(image=image, frame_index=self._pushed)
        self._pushed += 1
        self._frames.append(frame)
        if len(self._frames) > self.capacity:
            evicted = self._frames.popleft()
            LOGGER.debug("Evicted frame %d from buffer", evicted.frame_index)
        return frame

    def current(self) -> Optional[Frame]:
        return self._frames[-1] if self._frames else None

    def previous(self) -> Optional[Frame]:
        return self._frames[-2] if len(self._frames) >= 2 else None

    def discard_current(self) -> Optional[Frame]:
        """Drop the newest frame, used when processing it failed part-way."""
        if not self._frames:
            return None
        return self._frames.pop()

    def clear(self):
        self._frames.clear()
        self._pushed = 0
