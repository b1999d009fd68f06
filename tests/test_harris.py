"""
Tests for Harris corner detection and overlap suppression.
"""

import math
import os
import sys
import unittest

import cv2
import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from keytrail.tracking.harris import HarrisCornerDetector, keypoint_overlap  # type: ignore


def squares_image():
    """Black image with white squares, returning the image and their corners."""
    image = np.zeros((200, 240), dtype=np.uint8)
    corners = []
    for x0, y0 in [(30, 30), (120, 40), (60, 120), (160, 130)]:
        x1, y1 = x0 + 40, y0 + 40
        cv2.rectangle(image, (x0, y0), (x1, y1), 255, -1)
        corners.extend([(x0, y0), (x1, y0), (x0, y1), (x1, y1)])
    return image, corners


def keypoint(x, y, response=1.0, size=6.0):
    return cv2.KeyPoint(x=float(x), y=float(y), size=size, response=float(response))


def reference_suppress(candidates, max_overlap):
    """Plain linear scan over the accepted list, for comparison with the grid."""
    accepted = []
    for candidate in candidates:
        crossed = [
            i for i, kp in enumerate(accepted)
            if kp is not None and keypoint_overlap(candidate, kp) > max_overlap
        ]
        if not crossed:
            accepted.append(candidate)
        elif candidate.response > max(accepted[i].response for i in crossed):
            for i in crossed:
                accepted[i] = None
            accepted[crossed[0]] = candidate
    return [kp for kp in accepted if kp is not None]


class TestKeypointOverlap(unittest.TestCase):
    """Disc intersection-over-union."""

    def test_identical(self):
        self.assertAlmostEqual(keypoint_overlap(keypoint(5, 5), keypoint(5, 5)), 1.0)

    def test_disjoint_and_touching(self):
        self.assertEqual(keypoint_overlap(keypoint(0, 0), keypoint(20, 0)), 0.0)
        self.assertEqual(keypoint_overlap(keypoint(0, 0), keypoint(6, 0)), 0.0)

    def test_contained(self):
        inner = keypoint(0, 0, size=2.0)
        outer = keypoint(0.5, 0, size=8.0)
        self.assertAlmostEqual(keypoint_overlap(inner, outer), (1.0 / 4.0) ** 2)

    def test_partial_is_symmetric(self):
        first, second = keypoint(0, 0), keypoint(3, 0)
        value = keypoint_overlap(first, second)
        self.assertGreater(value, 0.0)
        self.assertLess(value, 1.0)
        self.assertAlmostEqual(value, keypoint_overlap(second, first))

        # Equal radius r at distance r: lens area / union area
        r = 3.0
        lens = 2 * r * r * math.acos(0.5) - 0.5 * r * math.sqrt(3 * r * r)
        self.assertAlmostEqual(value, lens / (2 * math.pi * r * r - lens), places=5)

    def test_agrees_with_opencv(self):
        """Suppression decisions at the threshold must match OpenCV exactly."""
        rng = np.random.default_rng(11)
        for _ in range(500):
            x1, y1, x2, y2 = rng.uniform(0, 20, 4)
            first = keypoint(x1, y1, size=float(rng.uniform(1, 12)))
            second = keypoint(x2, y2, size=float(rng.uniform(1, 12)))
            self.assertEqual(keypoint_overlap(first, second), cv2.KeyPoint.overlap(first, second))


class TestSuppression(unittest.TestCase):
    """Overlap-based non-maximum suppression."""

    def setUp(self):
        self.detector = HarrisCornerDetector()

    def test_stronger_candidate_replaces_in_place(self):
        result = self.detector.suppress([
            keypoint(0, 0, 1.0),
            keypoint(50, 50, 1.0),
            keypoint(1, 0, 5.0),
        ])
        self.assertEqual([kp.pt for kp in result], [(1.0, 0.0), (50.0, 50.0)])

    def test_weaker_candidate_is_discarded(self):
        result = self.detector.suppress([keypoint(0, 0, 5.0), keypoint(1, 0, 1.0), keypoint(2, 0, 5.0)])
        self.assertEqual([kp.pt for kp in result], [(0.0, 0.0)])

    def test_candidate_crossing_two_keypoints(self):
        left, right = keypoint(0, 0, 2.0), keypoint(7, 0, 3.0)
        self.assertEqual(len(self.detector.suppress([left, right])), 2)

        weak = self.detector.suppress([left, right, keypoint(3.5, 0, 2.5)])
        self.assertEqual([kp.response for kp in weak], [2.0, 3.0])

        strong = self.detector.suppress([left, right, keypoint(3.5, 0, 4.0)])
        self.assertEqual([(kp.pt, kp.response) for kp in strong], [((3.5, 0.0), 4.0)])

    def test_overlap_threshold_is_tunable(self):
        candidates = [keypoint(0, 0, 1.0), keypoint(5, 0, 2.0)]
        self.assertEqual(len(HarrisCornerDetector(max_overlap=0.0).suppress(candidates)), 1)
        self.assertEqual(len(HarrisCornerDetector(max_overlap=0.5).suppress(candidates)), 2)

    def test_grid_matches_linear_scan(self):
        rng = np.random.default_rng(7)
        candidates = [
            keypoint(x, y, r)
            for x, y, r in zip(rng.integers(0, 60, 400), rng.integers(-30, 30, 400), rng.uniform(0, 255, 400))
        ]
        for max_overlap in (0.0, 0.2):
            detector = HarrisCornerDetector(max_overlap=max_overlap)
            result = detector.suppress(candidates)
            expected = reference_suppress(candidates, max_overlap)
            self.assertEqual(
                [(kp.pt, kp.response) for kp in result],
                [(kp.pt, kp.response) for kp in expected],
            )

    def test_empty(self):
        self.assertEqual(self.detector.suppress([]), [])


class TestHarrisCornerDetector(unittest.TestCase):
    """Detection on synthetic images."""

    def setUp(self):
        self.detector = HarrisCornerDetector()
        self.image, self.corners = squares_image()

    def test_detects_square_corners(self):
        keypoints = self.detector.detect(self.image)
        self.assertGreater(len(keypoints), 0)
        for kp in keypoints:
            nearest = min(math.hypot(kp.pt[0] - x, kp.pt[1] - y) for x, y in self.corners)
            self.assertLess(nearest, 5.0)
            self.assertEqual(kp.size, 6.0)
            self.assertGreater(kp.response, self.detector.min_response)
        for x, y in self.corners:
            nearest = min(math.hypot(kp.pt[0] - x, kp.pt[1] - y) for kp in keypoints)
            self.assertLess(nearest, 5.0)

    def test_accepted_set_is_stable(self):
        """Re-suppressing the output leaves it unchanged."""
        keypoints = self.detector.detect(self.image)
        for i, first in enumerate(keypoints):
            for second in keypoints[i + 1:]:
                self.assertLessEqual(keypoint_overlap(first, second), self.detector.max_overlap)

        again = self.detector.suppress(keypoints)
        self.assertEqual([kp.pt for kp in again], [kp.pt for kp in keypoints])

    def test_flat_image_has_no_corners(self):
        flat = np.full((64, 64), 90, dtype=np.uint8)
        self.assertEqual(self.detector.detect(flat), [])

    def test_accepts_bgr(self):
        bgr = cv2.cvtColor(self.image, cv2.COLOR_GRAY2BGR)
        self.assertEqual(
            [kp.pt for kp in self.detector.detect(bgr)],
            [kp.pt for kp in self.detector.detect(self.image)],
        )

    def test_response_map_range(self):
        response = self.detector.response_map(self.image)
        self.assertEqual(response.dtype, np.float32)
        self.assertAlmostEqual(float(response.min()), 0.0, places=3)
        self.assertAlmostEqual(float(response.max()), 255.0, places=3)


if __name__ == "__main__":
    unittest.main()
