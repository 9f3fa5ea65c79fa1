"""
movement.py — Movement Telemetry Processor
===========================================

The door detection pipeline for one movement message:

    movement fields -> sensor lookup -> Kalman filter -> normalization
    -> signal quality (advisory) -> movement context -> classification
    -> metrics -> state change detection -> dynamic calibration

Per-sensor state lives in the shared ShardedTTLStore:
    kalman_states:<sensor>   — AxisStates, 1 h TTL (cold start after expiry)
    last_position:<sensor>   — last raw position and move_number, 1 h TTL
    door_state:<sensor>      — last emitted state (StateChangeTracker)
    calibration:<sensor>     — CalibrationRecord (CalibrationStore)
    detection_metrics:<id>   — SensorMetrics (DetectionMetrics)

A message without usable axis values short-circuits with
MissingMovementData before any filter state is touched.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

from . import config
from .calibration import CalibrationStore
from .door_state import (
    CERTAIN,
    CLOSED,
    DoorStateAnalyzer,
    DoorStateResult,
    MovementContext,
    StateChangeNotification,
    StateChangeTracker,
)
from .errors import MissingMovementData
from .kalman import AxisStates, KalmanFilter
from .messages import RawTelemetryMessage
from .metrics import DetectionMetrics
from .normalizer import AccelerometerNormalizer
from .registry import SensorRegistry
from .router import BaseProcessor
from .signal_quality import SignalQualityAnalyzer, SignalQualityReport
from .store import ShardedTTLStore
from .utils import to_number

logger = logging.getLogger("door_detection.movement")


@dataclass(frozen=True)
class MovementResult:
    """Everything the movement pipeline produced for one message."""

    sensor_id: str
    door_state: DoorStateResult
    signal_quality: SignalQualityReport
    recalibration_recommended: bool
    notification: Optional[StateChangeNotification] = None
    raw_position: tuple = field(default=(0.0, 0.0, 0.0))

    def to_dict(self) -> dict:
        return {
            "sensor_id": self.sensor_id,
            "door_state": self.door_state.to_broadcast(),
            "signal_quality": self.signal_quality.to_dict(),
            "recalibration_recommended": self.recalibration_recommended,
            "state_changed": self.notification is not None,
            "notification": self.notification.to_dict() if self.notification else None,
        }


def extract_position(movement: Optional[dict], source_address: int = None) -> tuple:
    """
    Raw (x, y, z) device-unit position from movement fields.

    Raises:
        MissingMovementData: Any axis absent, non-numeric or not finite.
    """
    if not movement:
        raise MissingMovementData("No movement data found in message", source_address)

    values = tuple(to_number(movement.get(axis)) for axis in config.MOVEMENT_AXES)
    if any(v is None for v in values):
        raise MissingMovementData(
            f"Incomplete accelerometer axes: "
            f"{ {axis: movement.get(axis) for axis in config.MOVEMENT_AXES} }",
            source_address,
        )
    return values


class MovementProcessor(BaseProcessor):
    """
    Runs the door detection pipeline for movement telemetry.

    Usage:
        processor = MovementProcessor(registry=registry)
        result = processor.process(message)
    """

    data_type = "movement"

    def __init__(self, registry: SensorRegistry = None,
                 store: ShardedTTLStore = None,
                 calibrations: CalibrationStore = None,
                 metrics: DetectionMetrics = None,
                 tracker: StateChangeTracker = None,
                 kalman: KalmanFilter = None,
                 normalizer: AccelerometerNormalizer = None,
                 quality: SignalQualityAnalyzer = None,
                 analyzer: DoorStateAnalyzer = None,
                 on_state_change: Callable[[StateChangeNotification], None] = None,
                 state_ttl: float = None,
                 dynamic_calibration: bool = None):
        super().__init__()
        self.store = store if store is not None else ShardedTTLStore()
        self.registry = registry or SensorRegistry()
        self.calibrations = calibrations or CalibrationStore(self.store)
        self.metrics = metrics or DetectionMetrics(self.store)
        self.tracker = tracker or StateChangeTracker(self.store)
        self.kalman = kalman or KalmanFilter()
        self.normalizer = normalizer or AccelerometerNormalizer()
        self.quality = quality or SignalQualityAnalyzer()
        self.analyzer = analyzer or DoorStateAnalyzer()
        self.on_state_change = on_state_change
        self.state_ttl = state_ttl or config.SENSOR_STATE_TTL_SECONDS
        self.dynamic_calibration = (config.DYNAMIC_CALIBRATION_ENABLED
                                    if dynamic_calibration is None else dynamic_calibration)

    # ── Per-sensor state ───────────────────────────────────────────

    def _apply_kalman(self, sensor_id: str, position: tuple) -> tuple:
        """Filter one position and persist the new axis states atomically."""
        x, y, z = position

        def _step(previous: Optional[AxisStates]) -> AxisStates:
            return self.kalman.filter_accelerometer(x, y, z, previous)

        states = self.store.update(f"kalman_states:{sensor_id}", _step, ttl=self.state_ttl)
        return states.filtered_values

    def _movement_context(self, sensor_id: str, position: tuple,
                          move_number) -> Optional[MovementContext]:
        """
        Movement since the last resting position, when a new movement started.

        A context is produced only when the tag reports a move_number that
        differs from the one seen with the previous reading.
        """
        seen = {}

        def _swap(previous):
            seen["previous"] = previous
            return {"position": position, "move_number": move_number}

        self.store.update(f"last_position:{sensor_id}", _swap, ttl=self.state_ttl)
        previous = seen["previous"]

        if previous is None or move_number is None:
            return None
        if previous["move_number"] == move_number:
            return None
        return MovementContext.from_positions(previous["position"], position)

    def reset_sensor_state(self, sensor_id) -> None:
        """Forget filter state, last position and cached door state."""
        self.store.delete(f"kalman_states:{sensor_id}")
        self.store.delete(f"last_position:{sensor_id}")
        self.tracker.reset(sensor_id)
        logger.info(f"Sensor state reset: {sensor_id}")

    # ── Pipeline ───────────────────────────────────────────────────

    def process(self, message: RawTelemetryMessage, started_at: float = None) -> MovementResult:
        """
        Process one movement message end to end.

        Args:
            message: Parsed movement telemetry.
            started_at: time.perf_counter() value at receipt.

        Returns:
            MovementResult.

        Raises:
            MissingMovementData: No usable axis fields.
            UnknownSensorIdentity: Source address not registered.
        """
        start = time.perf_counter() if started_at is None else started_at

        movement = message.extract_movement_data()
        position = extract_position(movement, message.source_address)

        sensor = self.registry.lookup(message.source_address)
        sensor_id = sensor.sensor_id

        filtered = self._apply_kalman(sensor_id, position)
        sample = self.normalizer.normalize(*filtered)

        report = self.quality.analyze(sample)
        recalibrate = self.quality.should_trigger_recalibration(sample, report)
        if recalibrate:
            logger.info(
                f"Recalibration recommended for sensor {sensor_id}: "
                f"clarity={report.clarity_score:.2f} quality={report.magnitude_quality} "
                f"recommendations={report.recommendations}"
            )

        context = self._movement_context(sensor_id, position, movement.get("move_number"))
        calibration = self.calibrations.get(sensor_id)

        result = self.analyzer.analyze(sample, calibration, context, started_at=start)
        if calibration is None and sensor.opening_type != result.opening_type:
            result = replace(result, opening_type=sensor.opening_type)

        self.metrics.record_detection(sensor_id, result)

        notification = self.tracker.observe(sensor_id, result)
        if notification is not None and self.on_state_change is not None:
            try:
                self.on_state_change(notification)
            except Exception as e:
                logger.error(f"State change notifier failed for sensor {sensor_id}: {e}",
                             exc_info=True)

        if (self.dynamic_calibration and calibration is not None
                and result.state == CLOSED and result.certainty == CERTAIN):
            self.calibrations.update_dynamic_reference(sensor_id, sample)

        return MovementResult(
            sensor_id=sensor_id,
            door_state=result,
            signal_quality=report,
            recalibration_recommended=recalibrate,
            notification=notification,
            raw_position=position,
        )
