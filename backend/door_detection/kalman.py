"""
kalman.py — Per-Axis Kalman Filter
===================================

Smooths raw accelerometer samples before classification so that a single
jittery packet does not flip the door state.

Scalar filter with a static state model, applied independently to x, y, z:

    predicted_P = P + process_noise
    K           = predicted_P / (predicted_P + measurement_noise)
    estimate    = estimate + K * (measurement - estimate)
    P           = (1 - K) * predicted_P

The filter itself is stateless: callers pass the previous KalmanState
(or None for a cold start) and keep the returned state. The movement
processor stores the three axis states of a sensor together in the
per-sensor store with a 1 h TTL, after which the filter cold-starts.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from . import config

logger = logging.getLogger("door_detection.kalman")


@dataclass(frozen=True)
class KalmanState:
    """Filter state for one sensor axis."""

    estimate: float
    error_covariance: float
    kalman_gain: float = 0.0


@dataclass(frozen=True)
class AxisStates:
    """The three axis states of one sensor, stored together."""

    x: KalmanState
    y: KalmanState
    z: KalmanState

    @property
    def filtered_values(self) -> tuple:
        """Current (x, y, z) estimates."""
        return (self.x.estimate, self.y.estimate, self.z.estimate)


def kalman_filter(measurement: float, previous: Optional[KalmanState] = None,
                  process_noise: float = None,
                  measurement_noise: float = None) -> KalmanState:
    """
    Run one predict/update step.

    Args:
        measurement: New raw measurement.
        previous: State returned by the previous call, None on first sight.
        process_noise: Defaults to config.KALMAN_PROCESS_NOISE (0.01).
        measurement_noise: Defaults to config.KALMAN_MEASUREMENT_NOISE (0.1).

    Returns:
        The new KalmanState.
    """
    if previous is None:
        return KalmanState(
            estimate=float(measurement),
            error_covariance=config.KALMAN_INITIAL_ERROR_COVARIANCE,
        )

    q = config.KALMAN_PROCESS_NOISE if process_noise is None else process_noise
    r = config.KALMAN_MEASUREMENT_NOISE if measurement_noise is None else measurement_noise

    # Predict
    predicted_covariance = previous.error_covariance + q

    # Update
    gain = predicted_covariance / (predicted_covariance + r)
    estimate = previous.estimate + gain * (measurement - previous.estimate)
    covariance = (1 - gain) * predicted_covariance

    return KalmanState(estimate=estimate, error_covariance=covariance,
                       kalman_gain=gain)


class KalmanFilter:
    """
    Three-axis wrapper around kalman_filter() with configured noise.

    Attributes:
        process_noise (float): Process noise (Q).
        measurement_noise (float): Measurement noise (R).
    """

    def __init__(self, process_noise: float = None, measurement_noise: float = None):
        """
        Args:
            process_noise: Defaults to config.KALMAN_PROCESS_NOISE.
            measurement_noise: Defaults to config.KALMAN_MEASUREMENT_NOISE.
        """
        self.process_noise = (process_noise if process_noise is not None
                              else config.KALMAN_PROCESS_NOISE)
        self.measurement_noise = (measurement_noise if measurement_noise is not None
                                  else config.KALMAN_MEASUREMENT_NOISE)

    def filter(self, measurement: float,
               previous: Optional[KalmanState] = None) -> KalmanState:
        return kalman_filter(measurement, previous,
                             self.process_noise, self.measurement_noise)

    def filter_accelerometer(self, x: float, y: float, z: float,
                             previous: Optional[AxisStates] = None) -> AxisStates:
        """
        Filter one accelerometer reading, axis by axis.

        Args:
            x, y, z: Raw axis values (device units).
            previous: AxisStates from the previous reading of this sensor.

        Returns:
            New AxisStates; .filtered_values holds the smoothed reading.
        """
        states = AxisStates(
            x=self.filter(x, previous.x if previous else None),
            y=self.filter(y, previous.y if previous else None),
            z=self.filter(z, previous.z if previous else None),
        )
        logger.debug(
            f"Kalman: raw=({x}, {y}, {z}) -> "
            f"filtered=({states.x.estimate:.3f}, {states.y.estimate:.3f}, "
            f"{states.z.estimate:.3f})"
        )
        return states
