"""Shared helper modules used across the project.

The :mod:`utils` package contains lightweight helpers for logging, typed
settings, YAML configuration, error tracking, CLI dispatching and artifact
file I/O.
"""

from .logger import Logger, LoggerType
from .settings import (
    DEFAULT_SCHEMA_MASK,
    LoggingCfg,
    PublisherCfg,
    SensorCfg,
    TimeoutPreset,
    paths,
    logging,
    sensor,
    publisher,
)
from .error_tracker import (
    ErrorTracker,
    SensorConfigError,
    SensorConnectionError,
    SensorError,
)

__all__ = [
    "DEFAULT_SCHEMA_MASK",
    "Logger",
    "LoggerType",
    "LoggingCfg",
    "PublisherCfg",
    "SensorCfg",
    "TimeoutPreset",
    "paths",
    "logging",
    "sensor",
    "publisher",
    "ErrorTracker",
    "SensorConfigError",
    "SensorConnectionError",
    "SensorError",
]
