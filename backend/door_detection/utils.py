"""
utils.py — Shared Utility Functions and Logging Setup
======================================================

Common helpers used across the door detection modules.
"""

import logging
import math
import time
from datetime import datetime, timezone

from . import config


def setup_logging(level: str = None) -> None:
    """
    Configure structured logging for the detection pipeline.

    Sets up a console handler with timestamp, logger name, level,
    and message. All door_detection.* loggers inherit this configuration.

    Args:
        level: Log level string (DEBUG/INFO/WARNING/ERROR/CRITICAL).
               Defaults to config.LOG_LEVEL.
    """
    level = level or config.LOG_LEVEL
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(name)s] %(levelname)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger("door_detection")
    root_logger.setLevel(numeric_level)

    # Avoid duplicate handlers on repeated calls
    if not root_logger.handlers:
        root_logger.addHandler(handler)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def elapsed_ms(start: float) -> float:
    """Milliseconds elapsed since a time.perf_counter() reading."""
    return (time.perf_counter() - start) * 1000.0


def to_number(value):
    """
    Coerce a telemetry field to float.

    Args:
        value: Raw payload value (int, float, numeric string, bool, None).

    Returns:
        The float value, or None when the field is absent, non-numeric
        or not finite (NaN, Infinity).
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
