"""
Tracking subpackage.

Keypoint detection, post-processing and descriptor matching for consecutive
frames.

Supported detectors:
- SHI_TOMASI (Good Features To Track)
- HARRIS (custom overlap-based non-maximum suppression)
- FAST, BRISK, ORB, AKAZE, SIFT

Supported descriptors:
- BRISK, AKAZE, ORB, FREAK (binary)
- SIFT, KAZE (floating point)
- MSER tag is recognised but rejected as an extractor
"""

from .errors import ConfigurationError, DescriptorMismatchError
from .feature import (
    DescriptorType,
    DetectorType,
    FeatureDetectorFactory,
    MetricFamily,
    ShiTomasiDetector,
    detect_keypoints,
    extract_descriptors,
)
from .filters import KeypointFilter, filter_to_region, retain_best
from .harris import HarrisCornerDetector, keypoint_overlap
from .matching import DescriptorMatcher, MatcherType, SelectorType, match_descriptors

__all__ = [
    "ConfigurationError",
    "DescriptorMatcher",
    "DescriptorMismatchError",
    "DescriptorType",
    "DetectorType",
    "FeatureDetectorFactory",
    "HarrisCornerDetector",
    "KeypointFilter",
    "MatcherType",
    "MetricFamily",
    "SelectorType",
    "ShiTomasiDetector",
    "detect_keypoints",
    "extract_descriptors",
    "filter_to_region",
    "keypoint_overlap",
    "match_descriptors",
    "retain_best",
]
