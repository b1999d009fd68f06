"""
Keypoint post-processing: region-of-interest filtering and budget enforcement.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import cv2

from .errors import ConfigurationError

LOGGER = logging.getLogger(__name__)

Region = Tuple[float, float, float, float]  # x, y, width, height


def filter_to_region(keypoints: Sequence[cv2.KeyPoint], region: Region) -> List[cv2.KeyPoint]:
    """Keep keypoints with ``x <= px < x + width`` and ``y <= py < y + height``."""
    x, y, width, height = region
    return [
        kp for kp in keypoints
        if x <= kp.pt[0] < x + width and y <= kp.pt[1] < y + height
    ]


def retain_best(keypoints: Sequence[cv2.KeyPoint], max_keypoints: int) -> List[cv2.KeyPoint]:
    """
    Keep the ``max_keypoints`` strongest keypoints by response.

    Ties keep detection order. A list that already fits the budget is returned
    unchanged.
    """
    if len(keypoints) <= max_keypoints:
        return list(keypoints)
    ranked = sorted(keypoints, key=lambda kp: kp.response, reverse=True)
    return ranked[:max_keypoints]


@dataclass(frozen=True)
class KeypointFilter:
    """Region filter followed by the keypoint budget; either stage may be disabled."""

    region: Optional[Region] = None
    max_keypoints: Optional[int] = None

    def __post_init__(self):
        if self.region is not None:
            if len(self.region) != 4:
                raise ConfigurationError(f"Region must be (x, y, width, height), got {self.region!r}")
            if self.region[2] <= 0 or self.region[3] <= 0:
                raise ConfigurationError(f"Region must have a positive extent, got {self.region!r}")
        if self.max_keypoints is not None and self.max_keypoints < 0:
            raise ConfigurationError(f"max_keypoints must be >= 0, got {self.max_keypoints}")

    def apply(self, keypoints: Sequence[cv2.KeyPoint]) -> List[cv2.KeyPoint]:
        result = list(keypoints)
        if self.region is not None:
            result = filter_to_region(result, self.region)
            LOGGER.debug("Region filter kept %d of %d keypoints", len(result), len(keypoints))
        if self.max_keypoints is not None:
            result = retain_best(result, self.max_keypoints)
        return result
