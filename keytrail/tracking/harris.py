"""
Harris corner detection with overlap-based non-maximum suppression.

The dense Harris response comes from OpenCV; reducing it to a sparse keypoint
set is done here. Accepted keypoints are kept in an indexed list (the arena)
and bucketed in a uniform grid so each candidate is only compared against
accepted keypoints in its neighbourhood.
"""

from __future__ import annotations

import logging
import math
import time
from collections import defaultdict
from typing import DefaultDict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

LOGGER = logging.getLogger(__name__)


def keypoint_overlap(first: cv2.KeyPoint, second: cv2.KeyPoint) -> float:
    """Intersection-over-union of the two keypoints' support discs (0 when disjoint)."""
    return cv2.KeyPoint.overlap(first, second)


class HarrisCornerDetector:
    """
    Sparse Harris corner detector.

    Pixels whose normalised response exceeds ``min_response`` become candidate
    keypoints in row-major scan order. A candidate whose overlap with accepted
    keypoints exceeds ``max_overlap`` is kept only if its response beats every
    keypoint it crosses; it then takes the slot of the first one crossed and the
    others are dropped. Otherwise it is discarded. A candidate crossing nothing
    is appended.
    """

    def __init__(
        self,
        block_size: int = 2,
        aperture_size: int = 3,
        k: float = 0.04,
        min_response: float = 100.0,
        max_overlap: float = 0.0,
    ):
        self.block_size = block_size
        self.aperture_size = aperture_size
        self.k = k
        self.min_response = min_response
        self.max_overlap = max_overlap

    def response_map(self, gray: np.ndarray) -> np.ndarray:
        """Harris response normalised to [0, 255] as float32."""
        dst = cv2.cornerHarris(gray, self.block_size, self.aperture_size, self.k)
        return cv2.normalize(dst, None, 0, 255, cv2.NORM_MINMAX, cv2.CV_32F)

    def detect(self, image: np.ndarray, mask: Optional[np.ndarray] = None) -> List[cv2.KeyPoint]:
        """Detect Harris keypoints in ``image`` (grayscale or BGR)."""
        gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        start = time.perf_counter()

        response = self.response_map(gray)
        selected = response > self.min_response
        if mask is not None:
            selected &= mask > 0
        rows, cols = np.nonzero(selected)

        size = float(2 * self.aperture_size)
        candidates = [
            cv2.KeyPoint(x=float(col), y=float(row), size=size, response=float(response[row, col]))
            for row, col in zip(rows, cols)
        ]
        keypoints = self.suppress(candidates)

        LOGGER.debug(
            "Harris corner detection with n=%d keypoints (%d candidates) in %.2f ms",
            len(keypoints),
            len(candidates),
            (time.perf_counter() - start) * 1000.0,
        )
        return keypoints

    def suppress(self, candidates: Sequence[cv2.KeyPoint]) -> List[cv2.KeyPoint]:
        """Reduce ``candidates`` (visited in order) to a non-overlapping set."""
        if not candidates:
            return []

        # Two discs can only overlap when their centres are closer than the
        # sum of the radii, so neighbouring cells are enough.
        cell = max(max(kp.size for kp in candidates), 1.0)
        accepted: List[Optional[cv2.KeyPoint]] = []
        grid: DefaultDict[Tuple[int, int], List[int]] = defaultdict(list)

        def cell_of(kp: cv2.KeyPoint) -> Tuple[int, int]:
            return int(math.floor(kp.pt[0] / cell)), int(math.floor(kp.pt[1] / cell))

        for candidate in candidates:
            cx, cy = cell_of(candidate)
            crossed = sorted(
                index
                for gx in (cx - 1, cx, cx + 1)
                for gy in (cy - 1, cy, cy + 1)
                for index in grid.get((gx, gy), ())
                if keypoint_overlap(candidate, accepted[index]) > self.max_overlap
            )

            if not crossed:
                grid[(cx, cy)].append(len(accepted))
                accepted.append(candidate)
                continue

            if candidate.response <= max(accepted[index].response for index in crossed):
                continue

            for index in crossed:
                grid[cell_of(accepted[index])].remove(index)
                accepted[index] = None
            accepted[crossed[0]] = candidate
            grid[(cx, cy)].append(crossed[0])

        return [kp for kp in accepted if kp is not None]
