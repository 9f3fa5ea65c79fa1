"""
calibration.py — Closed-Position Calibration
=============================================

A calibration record stores, per sensor, the accelerometer reading expected
when the door/window is fully closed ("closed reference", device units)
plus the tolerance around it.

Drift adaptation:
    Mounting screws settle and temperature shifts the accelerometer bias,
    so confident closed readings slowly pull the reference towards them:

        new_ref = round(old_ref * (1 - w) + position * w, 2)     w = 0.1

    The update is applied only when the largest single-axis change is
    ≤ 0.5 device units; a bigger jump is treated as an anomalous reading
    and the record is left untouched. Every applied update appends an
    adjustment entry to the record's history.

Records are immutable: updates return a new record, and the
CalibrationStore swaps it in atomically per sensor.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Sequence, Union

import numpy as np

from . import config
from .errors import CalibrationError
from .normalizer import AccelerometerSample
from .store import ShardedTTLStore
from .utils import utc_now

logger = logging.getLogger("door_detection.calibration")

_KEY_PREFIX = "calibration:"


@dataclass(frozen=True)
class CalibrationAdjustment:
    """One applied dynamic reference update."""

    old_reference: tuple
    new_reference: tuple
    max_change: float
    timestamp: datetime
    type: str = "dynamic_update"

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "old_reference": list(self.old_reference),
            "new_reference": list(self.new_reference),
            "max_change": self.max_change,
            "timestamp": self.timestamp.isoformat(),
        }


def _device_position(position: Union[AccelerometerSample, Sequence[float]]) -> tuple:
    if isinstance(position, AccelerometerSample):
        return position.to_device_scale()
    x, y, z = position
    return (x, y, z)


@dataclass(frozen=True)
class CalibrationRecord:
    """
    Calibrated closed position of one sensor.

    Attributes:
        closed_reference: (x, y, z) in device units.
        tolerance: Allowed distance (device units) around the reference.
        data_stability: Stability score (0-1) of the calibration data.
        calibrated_at: When the calibration was taken.
        calibrated_by: Identity of the operator, if any.
        history: Applied dynamic adjustments, oldest first.
        opening_type: "door" or "window".
    """

    closed_reference: tuple
    tolerance: float = config.DEFAULT_TOLERANCE
    data_stability: float = 1.0
    calibrated_at: datetime = field(default_factory=utc_now)
    calibrated_by: Optional[str] = None
    history: tuple = ()
    opening_type: str = config.DEFAULT_OPENING_TYPE

    def _deltas(self, sample: AccelerometerSample) -> tuple:
        current = sample.to_device_scale()
        return tuple(abs(c - r) for c, r in zip(current, self.closed_reference))

    def is_within_tolerance(self, sample: AccelerometerSample) -> bool:
        """True when every axis is within tolerance of the closed reference."""
        return all(delta <= self.tolerance for delta in self._deltas(sample))

    def calculate_max_difference(self, sample: AccelerometerSample) -> float:
        """Largest single-axis difference from the closed reference."""
        return float(max(self._deltas(sample)))

    def distance_to(self, sample: AccelerometerSample) -> float:
        """Euclidean distance from the closed reference, in device units."""
        return math.sqrt(sum(delta * delta for delta in self._deltas(sample)))

    def update_dynamic_reference(
        self,
        new_position: Union[AccelerometerSample, Sequence[float]],
        weight: float = None,
        max_change: float = None,
    ) -> "CalibrationRecord":
        """
        Blend a new closed position into the reference.

        Args:
            new_position: AccelerometerSample (converted to device units) or
                an (x, y, z) triple already in device units.
            weight: Share of the new position. Defaults to
                config.DYNAMIC_REFERENCE_WEIGHT (0.1).
            max_change: Largest allowed single-axis change. Defaults to
                config.DYNAMIC_REFERENCE_MAX_CHANGE (0.5).

        Returns:
            A new record with the blended reference and an appended history
            entry, or this record unchanged when the change is too large
            or the reference would not move.
        """
        weight = config.DYNAMIC_REFERENCE_WEIGHT if weight is None else weight
        max_change = config.DYNAMIC_REFERENCE_MAX_CHANGE if max_change is None else max_change

        position = _device_position(new_position)
        blended = tuple(
            round(old * (1 - weight) + new * weight, 2)
            for old, new in zip(self.closed_reference, position)
        )
        if blended == tuple(self.closed_reference):
            return self

        # Both sides are 2-decimal values; round away float residue.
        change = round(max(abs(b - old) for b, old in zip(blended, self.closed_reference)), 2)
        if change > max_change:
            logger.debug(
                f"Dynamic reference update rejected: change {change:.2f} > {max_change}"
            )
            return self

        adjustment = CalibrationAdjustment(
            old_reference=tuple(self.closed_reference),
            new_reference=blended,
            max_change=change,
            timestamp=utc_now(),
        )
        return replace(self, closed_reference=blended,
                       history=self.history + (adjustment,))

    def to_dict(self) -> dict:
        return {
            "door_position": {
                "closed_reference": list(self.closed_reference),
                "tolerance": self.tolerance,
                "calibrated_at": self.calibrated_at.isoformat(),
                "calibrated_by": self.calibrated_by,
                "data_stability": self.data_stability,
                "opening_type": self.opening_type,
            },
            "history": [entry.to_dict() for entry in self.history],
        }


def assess_position_stability(positions: Sequence[Sequence[float]],
                              max_variance: float = None) -> dict:
    """
    Per-axis population variance of a series of resting positions.

    Args:
        positions: (x, y, z) device-unit readings.
        max_variance: Largest acceptable variance. Defaults to
            config.CALIBRATION_MAX_VARIANCE (1.0).

    Returns:
        Dict with variance_x/y/z, overall_stability (0-1), stable flag,
        sample_count and mean position.
    """
    max_variance = max_variance or config.CALIBRATION_MAX_VARIANCE
    data = np.asarray(positions, dtype=float).reshape(-1, 3)

    variances = data.var(axis=0)
    worst = float(variances.max())
    stability = max(0.0, min(1.0, 1.0 - worst / max_variance))

    return {
        "variance_x": float(variances[0]),
        "variance_y": float(variances[1]),
        "variance_z": float(variances[2]),
        "overall_stability": stability,
        "stable": worst <= max_variance,
        "sample_count": int(data.shape[0]),
        "mean_position": tuple(float(v) for v in data.mean(axis=0)),
    }


class CalibrationStore:
    """
    Per-sensor calibration records on top of the sharded store.

    Calibration never expires on its own; it is replaced or removed
    explicitly.
    """

    def __init__(self, store: ShardedTTLStore = None):
        self._store = store if store is not None else ShardedTTLStore()

    @staticmethod
    def _key(sensor_id) -> str:
        return f"{_KEY_PREFIX}{sensor_id}"

    def get(self, sensor_id) -> Optional[CalibrationRecord]:
        return self._store.get(self._key(sensor_id))

    def set(self, sensor_id, record: CalibrationRecord) -> None:
        self._store.put(self._key(sensor_id), record)
        logger.info(
            f"Calibration set for sensor {sensor_id}: "
            f"reference={record.closed_reference} tolerance={record.tolerance}"
        )

    def remove(self, sensor_id) -> bool:
        removed = self._store.delete(self._key(sensor_id))
        if removed:
            logger.info(f"Calibration removed for sensor {sensor_id}")
        return removed

    def sensor_ids(self) -> list:
        return [key[len(_KEY_PREFIX):] for key in self._store.keys(_KEY_PREFIX)]

    def update_dynamic_reference(self, sensor_id, new_position,
                                 weight: float = None) -> Optional[CalibrationRecord]:
        """
        Atomically apply a dynamic reference update for one sensor.

        Returns:
            The (possibly unchanged) record, or None if the sensor has no
            calibration.
        """
        before = self.get(sensor_id)
        if before is None:
            return None

        def _apply(record):
            if record is None:
                return None
            return record.update_dynamic_reference(new_position, weight)

        after = self._store.update(self._key(sensor_id), _apply)
        if after is not None and len(after.history) > len(before.history):
            logger.debug(
                f"Dynamic calibration updated for sensor {sensor_id}: "
                f"{after.history[-1].old_reference} -> {after.closed_reference}"
            )
        return after

    def calibrate_from_positions(self, sensor_id, positions: Sequence[Sequence[float]],
                                 tolerance: float = None, calibrated_by: str = None,
                                 opening_type: str = None) -> CalibrationRecord:
        """
        Calibrate a sensor from a series of resting (closed) positions.

        Requires at least config.CALIBRATION_MIN_SAMPLES positions, every
        value inside config.CALIBRATION_POSITION_RANGE, and per-axis
        variance ≤ config.CALIBRATION_MAX_VARIANCE. The mean position
        becomes the closed reference.

        Raises:
            CalibrationError: If the positions are insufficient, out of range
                or unstable.
        """
        if len(positions) < config.CALIBRATION_MIN_SAMPLES:
            raise CalibrationError(
                f"Insufficient data points: {len(positions)} "
                f"(need ≥{config.CALIBRATION_MIN_SAMPLES})"
            )

        low, high = config.CALIBRATION_POSITION_RANGE
        for position in positions:
            if len(position) != 3:
                raise CalibrationError(f"Position must have 3 axes: {tuple(position)}")
            if any(value < low or value > high for value in position):
                raise CalibrationError(f"Position value out of range: {tuple(position)}")

        stability = assess_position_stability(positions)
        if not stability["stable"]:
            raise CalibrationError(
                "Sensor values are not stable: "
                f"variances=({stability['variance_x']:.2f}, "
                f"{stability['variance_y']:.2f}, {stability['variance_z']:.2f})"
            )

        record = CalibrationRecord(
            closed_reference=tuple(round(v, 2) for v in stability["mean_position"]),
            tolerance=tolerance if tolerance is not None else config.DEFAULT_TOLERANCE,
            data_stability=stability["overall_stability"],
            calibrated_by=calibrated_by,
            opening_type=opening_type or config.DEFAULT_OPENING_TYPE,
        )
        self.set(sensor_id, record)
        return record
