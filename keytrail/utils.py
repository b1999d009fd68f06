"""
Shared helper functions and utilities.

This module contains logging setup and the default pipeline settings.
"""

import logging
from dataclasses import asdict

from .pipeline import PipelineConfiguration

LOGGER = logging.getLogger(__name__)


def setup_logging(level=logging.INFO):
    """Configure root logging and set the level of the ``keytrail`` loggers.

    Per-frame detection, extraction and matching timings are logged at DEBUG,
    so pass ``logging.DEBUG`` to see them.

    Args:
        level: Logging level (default: INFO)

    Returns:
        logging.Logger: The ``keytrail`` package logger
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    package_logger = logging.getLogger("keytrail")
    package_logger.setLevel(level)
    LOGGER.info("Logging initialized at %s", logging.getLevelName(level))
    return package_logger


def get_config(overrides=None):
    """Return the default pipeline settings, updated with ``overrides``.
    
    Args:
        overrides: Dictionary of settings to change (optional)
        
    Returns:
        dict: Configuration dictionary accepted by ``FeaturePipeline``
    """
    config = asdict(PipelineConfiguration())
    for key, value in dict(overrides or {}).items():
        if key not in config:
            LOGGER.warning("Ignoring unknown config key: %s", key)
            continue
        config[key] = value
    return config
