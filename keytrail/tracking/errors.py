"""
Exceptions raised by the tracking components.
"""


class ConfigurationError(ValueError):
    """Unknown detector/extractor/matcher tag or an out-of-range tunable."""


class DescriptorMismatchError(ValueError):
    """Descriptor sets that cannot be compared, or that disagree with their keypoints."""
