"""
normalizer.py — Accelerometer Normalization
============================================

Converts Kalman-filtered device-unit readings into g-force and derives the
two quantities the classifier relies on:

    magnitude = sqrt(x² + y² + z²)
    angle     = degrees(acos(|z| / max(magnitude, 0.001)))

The angle is measured from the vertical (z) axis, so a tag resting on a
closed door reads close to 0° and a tag on a swung-open leaf reads larger
angles. A zero vector yields magnitude 0.0 and angle 90° without a
division error.
"""

import logging
import math
from dataclasses import dataclass

from . import config

logger = logging.getLogger("door_detection.normalizer")


@dataclass(frozen=True)
class AccelerometerSample:
    """
    One accelerometer reading in g-force (roughly -2.0 .. 2.0 per axis).

    Pure value type: derived quantities are recomputed on demand.
    """

    x: float
    y: float
    z: float

    def magnitude(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def angle(self) -> float:
        """Degrees between the vector and the vertical axis, in [0, 90]."""
        denominator = max(config.MAGNITUDE_EPSILON, self.magnitude())
        ratio = min(1.0, abs(self.z) / denominator)
        return math.degrees(math.acos(ratio))

    def is_vertical(self, threshold: float = None) -> bool:
        threshold = config.VERTICAL_THRESHOLD_DEG if threshold is None else threshold
        return self.angle() <= threshold

    def is_horizontal(self, threshold: float = None) -> bool:
        threshold = config.HORIZONTAL_THRESHOLD_DEG if threshold is None else threshold
        return self.angle() > threshold

    def to_device_scale(self) -> tuple:
        """Back to integer device units: round(v × 64) per axis."""
        return tuple(int(round(v * config.DEVICE_SCALE)) for v in (self.x, self.y, self.z))

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "z": self.z,
            "magnitude": self.magnitude(),
            "angle": self.angle(),
        }


def clarity_from_magnitude(magnitude: float) -> float:
    """
    Signal clarity in [0, 1] from the deviation of magnitude from 1 g.

    Inside the acceptable band [0.8, 1.2] g clarity is floored at 0.8, so a
    tilted mounting that never reads exactly 1 g is still trusted.
    """
    deviation = abs(magnitude - config.IDEAL_MAGNITUDE)
    clarity = 1.0 - min(deviation, 1.0)

    low, high = config.ACCEPTABLE_MAGNITUDE_RANGE
    if low <= magnitude <= high:
        clarity = max(config.CLARITY_FLOOR, clarity)

    return clarity


class AccelerometerNormalizer:
    """
    Device-unit → g-force converter.

    Attributes:
        scale (float): Device units per g (64.0 for Wirepas tags).
    """

    def __init__(self, scale: float = None):
        """
        Args:
            scale: Device fixed-point scale. Defaults to config.DEVICE_SCALE.
        """
        self.scale = scale or config.DEVICE_SCALE

    def normalize(self, x: float, y: float, z: float) -> AccelerometerSample:
        """
        Convert device-scale values to an AccelerometerSample in g.

        Args:
            x, y, z: Filtered axis values in device units.

        Returns:
            AccelerometerSample with each axis divided by the scale.
        """
        return AccelerometerSample(x=x / self.scale, y=y / self.scale, z=z / self.scale)

    def signal_clarity(self, sample: AccelerometerSample) -> float:
        """Signal clarity as a percentage (0–100)."""
        return clarity_from_magnitude(sample.magnitude()) * 100.0
