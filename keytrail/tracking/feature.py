"""
Detector and descriptor-extractor capabilities.

Every concrete detector/extractor is an OpenCV algorithm object selected by a
configuration tag. Dispatch goes through a table of builder functions, so adding
a variant means adding one enum member and one table entry.

Supported detectors:
- SHI_TOMASI (Good Features To Track)
- HARRIS (implemented in :mod:`keytrail.tracking.harris`)
- FAST, BRISK, ORB, AKAZE, SIFT

Supported descriptor extractors:
- BRISK, AKAZE, ORB, FREAK (binary, compared with Hamming distance)
- SIFT, KAZE (floating point, compared with L2 distance)
- MSER is accepted as a tag but rejected as an extractor: OpenCV's MSER only
  detects regions, so selecting it raises ``ConfigurationError``
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np

from .errors import ConfigurationError, DescriptorMismatchError
from .harris import HarrisCornerDetector

if TYPE_CHECKING:
    from ..pipeline import PipelineConfiguration

LOGGER = logging.getLogger(__name__)


class TaggedEnum(Enum):
    """Enum that can be looked up from a case-insensitive configuration tag."""

    @classmethod
    def from_tag(cls, tag):
        if isinstance(tag, cls):
            return tag
        key = str(tag).strip().upper()
        for member in cls:
            if key == member.name or key == str(member.value).upper():
                return member
        raise ConfigurationError(
            f"Unknown {cls.__name__} '{tag}'; expected one of: "
            + ", ".join(member.name for member in cls)
        )


class MetricFamily(TaggedEnum):
    """Descriptor families, deciding which distance the matcher uses."""
    BINARY = "des_binary"  # Hamming distance on byte-packed descriptors
    FLOATING = "des_hog"  # L2 distance on float descriptors


class DetectorType(TaggedEnum):
    """Supported keypoint detector types."""
    SHI_TOMASI = "shitomasi"
    HARRIS = "harris"
    FAST = "fast"
    BRISK = "brisk"
    ORB = "orb"
    AKAZE = "akaze"
    SIFT = "sift"


class DescriptorType(TaggedEnum):
    """Supported descriptor extractor types."""
    BRISK = "brisk"
    AKAZE = "akaze"
    KAZE = "kaze"
    MSER = "mser"
    ORB = "orb"
    SIFT = "sift"
    FREAK = "freak"

    @property
    def metric_family(self) -> MetricFamily:
        if self in (DescriptorType.SIFT, DescriptorType.KAZE):
            return MetricFamily.FLOATING
        return MetricFamily.BINARY

    def require_extractor(self) -> DescriptorType:
        """Return ``self`` if it can compute descriptors, else raise ``ConfigurationError``."""
        if self is DescriptorType.MSER:
            raise ConfigurationError(
                "MSER is a region detector and cannot compute descriptors; "
                "choose one of BRISK, AKAZE, KAZE, ORB, SIFT, FREAK"
            )
        return self


class ShiTomasiDetector:
    """Good Features To Track corners wrapped as a keypoint detector."""

    def __init__(
        self,
        block_size: int = 4,
        max_overlap: float = 0.0,
        quality_level: float = 0.01,
        k: float = 0.04,
    ):
        self.block_size = block_size
        self.quality_level = quality_level
        self.k = k
        self.min_distance = (1.0 - max_overlap) * block_size

    def detect(self, image: np.ndarray, mask: Optional[np.ndarray] = None) -> List[cv2.KeyPoint]:
        max_corners = int(image.shape[0] * image.shape[1] / max(1.0, self.min_distance))
        corners = cv2.goodFeaturesToTrack(
            image,
            maxCorners=max_corners,
            qualityLevel=self.quality_level,
            minDistance=self.min_distance,
            mask=mask,
            blockSize=self.block_size,
            useHarrisDetector=False,
            k=self.k,
        )
        if corners is None:
            return []
        return [
            cv2.KeyPoint(x=float(pt[0][0]), y=float(pt[0][1]), size=float(self.block_size))
            for pt in corners
        ]


def _opencv_factory(name: str) -> Callable:
    """Look up ``name`` in ``cv2``, then in the contrib ``cv2.xfeatures2d`` module."""
    for module in (cv2, getattr(cv2, "xfeatures2d", None)):
        factory = getattr(module, name, None)
        if factory is not None:
            return factory
    raise ConfigurationError(f"OpenCV build provides no {name} (tried cv2 and cv2.xfeatures2d)")


def _build_shi_tomasi(config: PipelineConfiguration):
    return ShiTomasiDetector(
        block_size=config.shi_tomasi_block_size,
        max_overlap=config.shi_tomasi_max_overlap,
        quality_level=config.shi_tomasi_quality_level,
        k=config.shi_tomasi_k,
    )


def _build_harris(config: PipelineConfiguration):
    return HarrisCornerDetector(
        block_size=config.harris_block_size,
        aperture_size=config.harris_aperture_size,
        k=config.harris_k,
        min_response=config.harris_min_response,
        max_overlap=config.harris_max_overlap,
    )


def _build_brisk(config: PipelineConfiguration):
    return _opencv_factory("BRISK_create")(
        thresh=config.brisk_threshold,
        octaves=config.brisk_octaves,
        patternScale=config.brisk_pattern_scale,
    )


def _build_freak(config: PipelineConfiguration):
    xfeatures2d = getattr(cv2, "xfeatures2d", None)
    if xfeatures2d is None:
        raise ConfigurationError("FREAK descriptors require opencv-contrib (cv2.xfeatures2d)")
    return xfeatures2d.FREAK_create()


def _build(name: str) -> Callable:
    return lambda config: _opencv_factory(name)()


_DETECTOR_BUILDERS: Dict[DetectorType, Callable] = {
    DetectorType.SHI_TOMASI: _build_shi_tomasi,
    DetectorType.HARRIS: _build_harris,
    DetectorType.FAST: _build("FastFeatureDetector_create"),
    DetectorType.BRISK: _build("BRISK_create"),
    DetectorType.ORB: _build("ORB_create"),
    DetectorType.AKAZE: _build("AKAZE_create"),
    DetectorType.SIFT: _build("SIFT_create"),
}

# MSER has no entry: OpenCV's MSER detects regions but cannot compute descriptors
_EXTRACTOR_BUILDERS: Dict[DescriptorType, Callable] = {
    DescriptorType.BRISK: _build_brisk,
    DescriptorType.AKAZE: _build("AKAZE_create"),
    DescriptorType.KAZE: _build("KAZE_create"),
    DescriptorType.ORB: _build("ORB_create"),
    DescriptorType.SIFT: _build("SIFT_create"),
    DescriptorType.FREAK: _build_freak,
}


class FeatureDetectorFactory:
    """Factory for creating keypoint detectors and descriptor extractors."""

    @staticmethod
    def create_detector(detector_type, config: PipelineConfiguration):
        """Create the detector for ``detector_type`` (enum member or tag)."""
        dtype = DetectorType.from_tag(detector_type)
        return _DETECTOR_BUILDERS[dtype](config)

    @staticmethod
    def create_extractor(descriptor_type, config: PipelineConfiguration):
        """Create the descriptor extractor for ``descriptor_type`` (enum member or tag)."""
        dtype = DescriptorType.from_tag(descriptor_type).require_extractor()
        return _EXTRACTOR_BUILDERS[dtype](config)


def detect_keypoints(detector, image: np.ndarray, label: str = "") -> List[cv2.KeyPoint]:
    """Run ``detector`` on ``image`` and return the keypoints as a list."""
    start = time.perf_counter()
    keypoints = list(detector.detect(image, None) or [])
    LOGGER.debug(
        "%s detection with n=%d keypoints in %.2f ms",
        label or type(detector).__name__,
        len(keypoints),
        (time.perf_counter() - start) * 1000.0,
    )
    return keypoints


def extract_descriptors(
    extractor,
    image: np.ndarray,
    keypoints: Sequence[cv2.KeyPoint],
    label: str = "",
) -> Tuple[List[cv2.KeyPoint], Optional[np.ndarray]]:
    """
    Compute descriptors for ``keypoints``.

    Returns:
        (keypoints, descriptors) where ``keypoints`` is the extractor's own list,
        which may be shorter than the input when points near the border are dropped.
    """
    if not keypoints:
        return [], None

    start = time.perf_counter()
    kept, descriptors = extractor.compute(image, list(keypoints))
    kept = list(kept or [])
    LOGGER.debug(
        "%s descriptor extraction for n=%d keypoints in %.2f ms",
        label or type(extractor).__name__,
        len(kept),
        (time.perf_counter() - start) * 1000.0,
    )

    if descriptors is None or len(descriptors) == 0:
        if kept:
            raise DescriptorMismatchError(
                f"Extractor returned {len(kept)} keypoints but no descriptors"
            )
        return [], None

    if descriptors.shape[0] != len(kept):
        raise DescriptorMismatchError(
            f"Extractor returned {descriptors.shape[0]} descriptors for {len(kept)} keypoints"
        )
    return kept, descriptors
