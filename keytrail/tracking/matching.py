"""
Descriptor matching between the previous (train) and current (query) frame.

Matching strategies:
- EXHAUSTIVE: brute-force all-pairs comparison (``cv2.BFMatcher``)
- APPROXIMATE: FLANN index search, LSH for binary and KD-tree for float descriptors

Selection policies:
- NEAREST: one match per query descriptor, its closest reference
- RATIO_TEST: Lowe's ratio test on the two closest references
"""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

import cv2
import numpy as np

from .errors import ConfigurationError, DescriptorMismatchError
from .feature import MetricFamily, TaggedEnum

LOGGER = logging.getLogger(__name__)

DEFAULT_RATIO_THRESHOLD = 0.8


class MatcherType(TaggedEnum):
    """Nearest-neighbour search strategies."""
    EXHAUSTIVE = "mat_bf"
    APPROXIMATE = "mat_flann"


class SelectorType(TaggedEnum):
    """How many candidates per query descriptor become matches."""
    NEAREST = "sel_nn"
    RATIO_TEST = "sel_knn"


def _check_alignment(keypoints: Sequence[cv2.KeyPoint], descriptors: Optional[np.ndarray], label: str):
    count = 0 if descriptors is None else descriptors.shape[0]
    if len(keypoints) != count:
        raise DescriptorMismatchError(
            f"{label} frame has {len(keypoints)} keypoints but {count} descriptors"
        )
    if descriptors is not None and descriptors.ndim != 2:
        raise DescriptorMismatchError(
            f"{label} descriptors must be a 2-D array, got shape {descriptors.shape}"
        )


class DescriptorMatcher:
    """Match current-frame descriptors against reference-frame descriptors."""

    def __init__(
        self,
        metric_family=MetricFamily.BINARY,
        matcher_type=MatcherType.EXHAUSTIVE,
        selector_type=SelectorType.NEAREST,
        ratio_threshold: float = DEFAULT_RATIO_THRESHOLD,
    ):
        self.metric_family = MetricFamily.from_tag(metric_family)
        self.matcher_type = MatcherType.from_tag(matcher_type)
        self.selector_type = SelectorType.from_tag(selector_type)
        if not 0.0 < ratio_threshold <= 1.0:
            raise ConfigurationError(f"ratio_threshold must be in (0, 1], got {ratio_threshold}")
        self.ratio_threshold = ratio_threshold
        self._norm = cv2.NORM_HAMMING if self.metric_family is MetricFamily.BINARY else cv2.NORM_L2
        self.matcher = self._create_matcher()

        # Filled in by the most recent call to match()
        self.last_query_count = 0
        self.last_rejected_count = 0

    def _create_matcher(self) -> cv2.DescriptorMatcher:
        if self.matcher_type is MatcherType.APPROXIMATE:
            if self.metric_family is MetricFamily.BINARY:
                index_params = dict(
                    algorithm=6,  # FLANN_INDEX_LSH
                    table_number=6,
                    key_size=12,
                    multi_probe_level=1,
                )
            else:
                index_params = dict(algorithm=1, trees=5)  # FLANN_INDEX_KDTREE
            search_params = dict(checks=50)
            return cv2.FlannBasedMatcher(index_params, search_params)
        return cv2.BFMatcher(self._norm, crossCheck=False)

    def _normalize(self, ref_descriptors: np.ndarray, cur_descriptors: np.ndarray):
        if ref_descriptors.shape[1] != cur_descriptors.shape[1]:
            raise DescriptorMismatchError(
                f"Descriptor widths differ: reference {ref_descriptors.shape[1]}, "
                f"current {cur_descriptors.shape[1]}"
            )
        if self.metric_family is MetricFamily.FLOATING:
            ref_descriptors = ref_descriptors.astype(np.float32, copy=False)
            cur_descriptors = cur_descriptors.astype(np.float32, copy=False)
            for name, descriptors in (("reference", ref_descriptors), ("current", cur_descriptors)):
                if not np.isfinite(descriptors).all():
                    raise DescriptorMismatchError(
                        f"{name.capitalize()} descriptors contain NaN or infinite values; "
                        "the extractor did not produce usable descriptors for these keypoints"
                    )
            return ref_descriptors, cur_descriptors
        if ref_descriptors.dtype != np.uint8 or cur_descriptors.dtype != np.uint8:
            raise DescriptorMismatchError(
                "Binary matching requires uint8 descriptors, got "
                f"{ref_descriptors.dtype} (reference) and {cur_descriptors.dtype} (current)"
            )
        return ref_descriptors, cur_descriptors

    def match(
        self,
        ref_keypoints: Sequence[cv2.KeyPoint],
        cur_keypoints: Sequence[cv2.KeyPoint],
        ref_descriptors: Optional[np.ndarray],
        cur_descriptors: Optional[np.ndarray],
    ) -> List[cv2.DMatch]:
        """
        Match the current frame (query) against the reference frame (train).

        Returns:
            Matches in query-index order; ``queryIdx`` indexes the current frame
            and ``trainIdx`` the reference frame.
        """
        _check_alignment(ref_keypoints, ref_descriptors, "Reference")
        _check_alignment(cur_keypoints, cur_descriptors, "Current")
        self.last_query_count = 0
        self.last_rejected_count = 0

        if not len(ref_keypoints) or not len(cur_keypoints):
            LOGGER.debug("Nothing to match: empty descriptor set")
            return []

        train, query = self._normalize(ref_descriptors, cur_descriptors)
        self.last_query_count = len(query)
        ratio_test = self.selector_type is SelectorType.RATIO_TEST
        if ratio_test and len(train) < 2:
            LOGGER.debug("Ratio test skipped: fewer than two reference descriptors")
            self.last_rejected_count = len(query)
            return []

        start = time.perf_counter()
        knn_matches = self.matcher.knnMatch(query, train, k=2 if ratio_test else 1)
        elapsed_ms = (time.perf_counter() - start) * 1000.0

        matches: List[cv2.DMatch] = []
        for query_idx, candidates in enumerate(knn_matches):
            ranked = self._rank(query, train, query_idx, candidates)
            if not ratio_test:
                if ranked:
                    matches.append(ranked[0])
            elif len(ranked) >= 2 and ranked[0].distance < self.ratio_threshold * ranked[1].distance:
                matches.append(ranked[0])

        self.last_rejected_count = len(query) - len(matches)
        LOGGER.debug(
            "(%s/%s) with n=%d matches in %.2f ms",
            self.matcher_type.name,
            self.selector_type.name,
            len(matches),
            elapsed_ms,
        )
        if ratio_test:
            LOGGER.debug(
                "Ratio test removed %.1f%% of %d candidate matches",
                100.0 * self.last_rejected_count / len(query),
                len(query),
            )
        return matches

    def _rank(self, query: np.ndarray, train: np.ndarray, query_idx: int, candidates) -> List[cv2.DMatch]:
        """Drop invalid indices and order candidates by the exact metric distance."""
        ranked = []
        for candidate in candidates:
            if not 0 <= candidate.trainIdx < len(train):
                continue
            distance = candidate.distance
            if self.matcher_type is MatcherType.APPROXIMATE:
                # FLANN reports index-specific distances (squared L2 for KD-trees)
                distance = cv2.norm(query[query_idx], train[candidate.trainIdx], self._norm)
            ranked.append(cv2.DMatch(query_idx, candidate.trainIdx, float(distance)))
        ranked.sort(key=lambda m: m.distance)
        return ranked


def match_descriptors(
    ref_keypoints: Sequence[cv2.KeyPoint],
    cur_keypoints: Sequence[cv2.KeyPoint],
    ref_descriptors: Optional[np.ndarray],
    cur_descriptors: Optional[np.ndarray],
    metric_family=MetricFamily.BINARY,
    matcher_type=MatcherType.EXHAUSTIVE,
    selector_type=SelectorType.NEAREST,
    ratio_threshold: float = DEFAULT_RATIO_THRESHOLD,
) -> List[cv2.DMatch]:
    """One-shot helper around :class:`DescriptorMatcher`."""
    matcher = DescriptorMatcher(metric_family, matcher_type, selector_type, ratio_threshold)
    return matcher.match(ref_keypoints, cur_keypoints, ref_descriptors, cur_descriptors)
