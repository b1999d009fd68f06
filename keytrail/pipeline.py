"""
Frame-to-frame feature tracking pipeline.

For each incoming image: push it into the frame buffer, detect keypoints,
restrict them to the region of interest, enforce the keypoint budget, compute
descriptors and, once two frames are buffered, match against the previous one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Dict, Optional, Tuple, Union

import cv2
import numpy as np

from .buffer import Frame, FrameBuffer
from .tracking.errors import ConfigurationError
from .tracking.feature import (
    DescriptorType,
    DetectorType,
    FeatureDetectorFactory,
    MetricFamily,
    detect_keypoints,
    extract_descriptors,
)
from .tracking.filters import KeypointFilter
from .tracking.matching import DescriptorMatcher, MatcherType, SelectorType

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineConfiguration:
    """Configuration for the feature pipeline."""

    # Capability selection
    detector_type: str = "FAST"
    descriptor_type: str = "BRISK"

    # Matching
    matcher_type: str = "MAT_BF"  # MAT_BF, MAT_FLANN
    selector_type: str = "SEL_NN"  # SEL_NN, SEL_KNN
    metric_family: Optional[str] = None  # DES_BINARY, DES_HOG; None = from descriptor type
    ratio_threshold: float = 0.8

    # Ring buffer
    buffer_capacity: int = 2

    # Region of interest (x, y, width, height)
    focus_on_region: bool = False
    region: Tuple[float, float, float, float] = (535, 180, 180, 150)

    # Keypoint budget
    limit_keypoints: bool = False
    max_keypoints: int = 50

    # Harris
    harris_block_size: int = 2
    harris_aperture_size: int = 3
    harris_k: float = 0.04
    harris_min_response: float = 100.0
    harris_max_overlap: float = 0.0

    # Shi-Tomasi
    shi_tomasi_block_size: int = 4
    shi_tomasi_max_overlap: float = 0.0
    shi_tomasi_quality_level: float = 0.01
    shi_tomasi_k: float = 0.04

    # BRISK extractor
    brisk_threshold: int = 30
    brisk_octaves: int = 3
    brisk_pattern_scale: float = 1.0

    def __post_init__(self):
        DetectorType.from_tag(self.detector_type)
        DescriptorType.from_tag(self.descriptor_type).require_extractor()
        MatcherType.from_tag(self.matcher_type)
        SelectorType.from_tag(self.selector_type)
        if self.metric_family is not None:
            MetricFamily.from_tag(self.metric_family)
        if not 0.0 < self.ratio_threshold <= 1.0:
            raise ConfigurationError(f"ratio_threshold must be in (0, 1], got {self.ratio_threshold}")
        if self.buffer_capacity < 1:
            raise ConfigurationError(f"buffer_capacity must be >= 1, got {self.buffer_capacity}")
        if not 0.0 <= self.harris_max_overlap < 1.0:
            raise ConfigurationError(f"harris_max_overlap must be in [0, 1), got {self.harris_max_overlap}")
        # Region and budget bounds are checked by KeypointFilter
        self.keypoint_filter()

    @classmethod
    def from_dict(cls, config: Optional[Dict] = None) -> PipelineConfiguration:
        """Build a configuration from a dict, ignoring unknown keys."""
        names = {f.name for f in fields(cls)}
        values = {k: v for k, v in dict(config or {}).items() if k in names}
        if "region" in values:
            values["region"] = tuple(values["region"])
        return cls(**values)

    def resolved_metric_family(self) -> MetricFamily:
        if self.metric_family is not None:
            return MetricFamily.from_tag(self.metric_family)
        return DescriptorType.from_tag(self.descriptor_type).metric_family

    def keypoint_filter(self) -> KeypointFilter:
        return KeypointFilter(
            region=self.region if self.focus_on_region else None,
            max_keypoints=self.max_keypoints if self.limit_keypoints else None,
        )


@dataclass
class PipelineMetrics:
    """Accumulated pipeline metrics for analysis."""

    total_frames: int = 0
    matched_frames: int = 0
    avg_keypoints: float = 0.0
    avg_matches: float = 0.0
    ratio_test_rejections: int = 0


class FeaturePipeline:
    """
    Detect, filter, describe and match keypoints across consecutive frames.

    Frames are processed strictly in order; matching for a frame always uses
    the fully processed previous frame.
    """

    def __init__(self, config: Union[PipelineConfiguration, Dict, None] = None):
        if isinstance(config, PipelineConfiguration):
            self.config = config
        else:
            self.config = PipelineConfiguration.from_dict(config)

        self.detector_type = DetectorType.from_tag(self.config.detector_type)
        self.descriptor_type = DescriptorType.from_tag(self.config.descriptor_type)
        self.detector = FeatureDetectorFactory.create_detector(self.detector_type, self.config)
        self.extractor = FeatureDetectorFactory.create_extractor(self.descriptor_type, self.config)
        self.keypoint_filter = self.config.keypoint_filter()
        self.matcher = DescriptorMatcher(
            metric_family=self.config.resolved_metric_family(),
            matcher_type=self.config.matcher_type,
            selector_type=self.config.selector_type,
            ratio_threshold=self.config.ratio_threshold,
        )
        self.buffer = FrameBuffer(self.config.buffer_capacity)
        self.metrics = PipelineMetrics()

        LOGGER.info(
            "FeaturePipeline initialized: detector=%s, descriptor=%s, matcher=%s/%s (%s)",
            self.detector_type.name,
            self.descriptor_type.name,
            self.matcher.matcher_type.name,
            self.matcher.selector_type.name,
            self.matcher.metric_family.name,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def reset(self):
        """Drop buffered frames and metrics."""
        self.buffer.clear()
        self.metrics = PipelineMetrics()

    def get_metrics(self) -> PipelineMetrics:
        return self.metrics

    def process_frame(self, image: np.ndarray) -> Frame:
        """
        Run the full pipeline on ``image``.

        Returns:
            The newest buffered frame with keypoints, descriptors and (when a
            previous frame exists) matches filled in. If any stage raises, the
            frame is removed from the buffer again and the error propagates.
        """
        if image is None or image.size == 0:
            raise ValueError("Frame cannot be empty.")

        gray = image if image.ndim == 2 else cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        frame = self.buffer.push(gray)
        try:
            self._describe(frame)
            previous = self.buffer.previous()
            if previous is not None:
                frame.matches = self.matcher.match(
                    previous.keypoints,
                    frame.keypoints,
                    previous.descriptors,
                    frame.descriptors,
                )
        except Exception:
            self.buffer.discard_current()
            raise

        self._update_metrics(frame, matched=previous is not None)
        return frame

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #
    def _describe(self, frame: Frame):
        keypoints = detect_keypoints(self.detector, frame.image, self.detector_type.name)
        keypoints = self.keypoint_filter.apply(keypoints)
        frame.keypoints, frame.descriptors = extract_descriptors(
            self.extractor, frame.image, keypoints, self.descriptor_type.name
        )

    def _update_metrics(self, frame: Frame, matched: bool):
        metrics = self.metrics
        metrics.total_frames += 1
        n = metrics.total_frames
        metrics.avg_keypoints = (metrics.avg_keypoints * (n - 1) + len(frame.keypoints)) / n

        if matched:
            metrics.matched_frames += 1
            m = metrics.matched_frames
            metrics.avg_matches = (metrics.avg_matches * (m - 1) + len(frame.matches)) / m
            if self.matcher.selector_type is SelectorType.RATIO_TEST:
                metrics.ratio_test_rejections += self.matcher.last_rejected_count

        LOGGER.debug(
            "Frame %d: %d keypoints, %d matches",
            frame.frame_index,
            len(frame.keypoints),
            len(frame.matches),
        )
