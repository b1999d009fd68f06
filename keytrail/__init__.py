"""
KEYTRAIL - 2D Feature Tracking Toolkit.

This package provides functionality for:
- Keypoint detection (Shi-Tomasi, Harris, FAST, BRISK, ORB, AKAZE, SIFT)
- Region-of-interest filtering and keypoint budgets
- Descriptor extraction (BRISK, AKAZE, KAZE, ORB, SIFT, FREAK)
- Descriptor matching between consecutive frames
"""

from .buffer import Frame, FrameBuffer
from .pipeline import FeaturePipeline, PipelineConfiguration, PipelineMetrics
from .tracking import (
    ConfigurationError,
    DescriptorMatcher,
    DescriptorMismatchError,
    DescriptorType,
    DetectorType,
    HarrisCornerDetector,
    KeypointFilter,
    MatcherType,
    MetricFamily,
    SelectorType,
)
from .utils import get_config, setup_logging

__version__ = "0.1.0"

__all__ = [
    # Pipeline
    "FeaturePipeline",
    "PipelineConfiguration",
    "PipelineMetrics",
    "Frame",
    "FrameBuffer",
    # Tracking
    "ConfigurationError",
    "DescriptorMatcher",
    "DescriptorMismatchError",
    "DescriptorType",
    "DetectorType",
    "HarrisCornerDetector",
    "KeypointFilter",
    "MatcherType",
    "MetricFamily",
    "SelectorType",
    # Utilities
    "get_config",
    "setup_logging",
]
