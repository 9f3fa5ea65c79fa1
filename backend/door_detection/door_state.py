"""
door_state.py — Door State Classification
==========================================

Classifies a normalized accelerometer sample as closed, opened or
probably_opened, with a certainty tier and a numeric confidence.

Decision table:

    Calibrated path (a closed reference exists):
        distance ≤ tolerance            → closed / CERTAIN / 95
        distance > tolerance            → opened / PROBABLE / 85
            needs_confirmation only when distance > tolerance × 1.5

    Angle path (no calibration), angle from vertical:
        angle ≤ 15°                     → closed, CERTAIN if quality > 0.8
                                          else PROBABLE, min(95, quality×100)
        angle > 30°                     → opened if confidence > 80 else
                                          probably_opened; PROBABLE if > 85
                                          else UNCERTAIN; confirmation < 80
        15° < angle ≤ 30°               → probably_opened / UNCERTAIN / 60

    Movement context (either path):
        movement magnitude > 20 device units → confidence × 1.1 (cap 100),
                                               UNCERTAIN promoted to PROBABLE

Each branch is a pure function so it can be exercised on its own;
DoorStateAnalyzer composes them and measures processing time.

State change detection lives in StateChangeTracker: the last emitted state
of every sensor is cached, and a classification that differs from it (or
the first classification ever) produces a StateChangeNotification.
"""

import logging
import math
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional

from . import config
from .calibration import CalibrationRecord
from .normalizer import AccelerometerSample, clarity_from_magnitude
from .store import ShardedTTLStore
from .utils import elapsed_ms, utc_now

logger = logging.getLogger("door_detection.door_state")

# States
CLOSED = "closed"
OPENED = "opened"
PROBABLY_OPENED = "probably_opened"
STATES = (CLOSED, OPENED, PROBABLY_OPENED)

# Certainty tiers
CERTAIN = "CERTAIN"
PROBABLE = "PROBABLE"
UNCERTAIN = "UNCERTAIN"

# Opening types
DOOR = "door"
WINDOW = "window"


@dataclass(frozen=True)
class MovementContext:
    """
    Recent physical movement of the tag, in device units.

    Attributes:
        movement_magnitude: Euclidean length of the movement delta.
        movement_delta: (dx, dy, dz) between start and stop position.
    """

    movement_magnitude: float
    movement_delta: tuple = (0.0, 0.0, 0.0)

    @classmethod
    def from_positions(cls, start, stop) -> "MovementContext":
        """Build a context from start and stop positions (device units)."""
        delta = tuple(float(b) - float(a) for a, b in zip(start, stop))
        magnitude = math.sqrt(sum(d * d for d in delta))
        return cls(movement_magnitude=magnitude, movement_delta=delta)

    def to_dict(self) -> dict:
        dx, dy, dz = self.movement_delta
        return {
            "movement_magnitude": self.movement_magnitude,
            "movement_delta": {"x": dx, "y": dy, "z": dz},
        }


@dataclass(frozen=True)
class Classification:
    """Output of one decision branch, before timing and context are attached."""

    state: str
    certainty: str
    confidence: float
    needs_confirmation: bool
    opening_type: str = DOOR


@dataclass(frozen=True)
class DoorStateResult:
    state: str
    certainty: str
    confidence: float
    needs_confirmation: bool
    opening_type: str
    angle: float
    magnitude: float
    processing_time_ms: float
    sample: AccelerometerSample
    movement_context: Optional[MovementContext] = None
    timestamp: datetime = field(default_factory=utc_now)

    @property
    def is_open(self) -> bool:
        return self.state in (OPENED, PROBABLY_OPENED)

    @property
    def is_closed(self) -> bool:
        return self.state == CLOSED

    def to_broadcast(self) -> dict:
        """Payload for the real-time broadcast layer."""
        return {
            "door_state": self.state,
            "certainty": self.certainty,
            "confidence": round(self.confidence, 2),
            "needs_confirmation": self.needs_confirmation,
            "opening_type": self.opening_type,
            "angle": round(self.angle, 2),
            "magnitude": round(self.magnitude, 4),
            "processing_time_ms": round(self.processing_time_ms, 3),
            "timestamp": self.timestamp.isoformat(),
        }


# ── Pure decision functions ───────────────────────────────────────


def classify_with_calibration(sample: AccelerometerSample,
                              calibration: CalibrationRecord,
                              confirmation_multiplier: float = None) -> Classification:
    """
    Classify against a calibrated closed reference.

    Args:
        sample: Normalized reading.
        calibration: The sensor's calibration record.
        confirmation_multiplier: Defaults to
            config.CONFIRMATION_TOLERANCE_MULTIPLIER (1.5).
    """
    multiplier = (config.CONFIRMATION_TOLERANCE_MULTIPLIER
                  if confirmation_multiplier is None else confirmation_multiplier)

    distance = calibration.distance_to(sample)
    opening_type = calibration.opening_type or DOOR

    if distance <= calibration.tolerance:
        return Classification(
            state=CLOSED,
            certainty=CERTAIN,
            confidence=config.CALIBRATED_CLOSED_CONFIDENCE,
            needs_confirmation=False,
            opening_type=opening_type,
        )

    return Classification(
        state=OPENED,
        certainty=PROBABLE,
        confidence=config.CALIBRATED_OPEN_CONFIDENCE,
        needs_confirmation=distance > calibration.tolerance * multiplier,
        opening_type=opening_type,
    )


def classify_by_angle(sample: AccelerometerSample,
                      vertical_threshold: float = None,
                      horizontal_threshold: float = None) -> Classification:
    """
    Classify from the angle to the vertical axis, without calibration.

    Args:
        sample: Normalized reading.
        vertical_threshold: Defaults to config.VERTICAL_THRESHOLD_DEG (15°).
        horizontal_threshold: Defaults to config.HORIZONTAL_THRESHOLD_DEG (30°).
    """
    vertical = config.VERTICAL_THRESHOLD_DEG if vertical_threshold is None else vertical_threshold
    horizontal = (config.HORIZONTAL_THRESHOLD_DEG
                  if horizontal_threshold is None else horizontal_threshold)

    angle = sample.angle()
    quality = clarity_from_magnitude(sample.magnitude())

    if angle <= vertical:
        return Classification(
            state=CLOSED,
            certainty=CERTAIN if quality > config.CERTAIN_QUALITY_THRESHOLD else PROBABLE,
            confidence=min(config.ANGLE_CLOSED_MAX_CONFIDENCE, quality * 100.0),
            needs_confirmation=False,
        )

    if angle > horizontal:
        confidence = min(config.ANGLE_OPEN_MAX_CONFIDENCE, quality * 100.0)
        return Classification(
            state=OPENED if confidence > config.OPENED_CONFIDENCE_THRESHOLD else PROBABLY_OPENED,
            certainty=PROBABLE if confidence > config.PROBABLE_CONFIDENCE_THRESHOLD else UNCERTAIN,
            confidence=confidence,
            needs_confirmation=confidence < config.OPENED_CONFIDENCE_THRESHOLD,
        )

    # Ambiguous band between the two thresholds
    return Classification(
        state=PROBABLY_OPENED,
        certainty=UNCERTAIN,
        confidence=config.AMBIGUOUS_CONFIDENCE,
        needs_confirmation=True,
    )


def apply_movement_context(classification: Classification,
                           context: Optional[MovementContext],
                           threshold: float = None,
                           boost: float = None,
                           cap: float = None) -> Classification:
    """
    Corroborate a classification with recent physical movement.

    Significant motion (magnitude > threshold) means a genuine transition
    rather than sensor noise: confidence is boosted and an UNCERTAIN
    certainty is promoted to PROBABLE.
    """
    if context is None:
        return classification

    threshold = config.MOVEMENT_MAGNITUDE_THRESHOLD if threshold is None else threshold
    boost = config.MOVEMENT_CONFIDENCE_BOOST if boost is None else boost
    cap = config.MOVEMENT_CONFIDENCE_CAP if cap is None else cap

    if context.movement_magnitude <= threshold:
        return classification

    certainty = classification.certainty
    if certainty == UNCERTAIN:
        certainty = PROBABLE

    return replace(
        classification,
        confidence=min(cap, classification.confidence * boost),
        certainty=certainty,
    )


class DoorStateAnalyzer:
    """
    Composes the decision functions into a timed DoorStateResult.

    Attributes:
        vertical_threshold (float): Closed angle limit (degrees).
        horizontal_threshold (float): Open angle limit (degrees).
        confirmation_multiplier (float): "Clearly open" tolerance multiplier.
    """

    def __init__(self, vertical_threshold: float = None,
                 horizontal_threshold: float = None,
                 confirmation_multiplier: float = None):
        self.vertical_threshold = (config.VERTICAL_THRESHOLD_DEG
                                   if vertical_threshold is None else vertical_threshold)
        self.horizontal_threshold = (config.HORIZONTAL_THRESHOLD_DEG
                                     if horizontal_threshold is None else horizontal_threshold)
        self.confirmation_multiplier = (config.CONFIRMATION_TOLERANCE_MULTIPLIER
                                        if confirmation_multiplier is None
                                        else confirmation_multiplier)

    def analyze(self, sample: AccelerometerSample,
                calibration: Optional[CalibrationRecord] = None,
                movement_context: Optional[MovementContext] = None,
                started_at: float = None) -> DoorStateResult:
        """
        Classify one sample.

        Args:
            sample: Normalized reading.
            calibration: Sensor calibration; selects the calibrated path.
            movement_context: Recent movement, applied after either path.
            started_at: time.perf_counter() value at sample receipt, so the
                reported processing time covers the whole pipeline.
                Defaults to the start of this call.

        Returns:
            DoorStateResult.
        """
        start = time.perf_counter() if started_at is None else started_at

        if calibration is not None:
            decision = classify_with_calibration(
                sample, calibration, self.confirmation_multiplier
            )
        else:
            decision = classify_by_angle(
                sample, self.vertical_threshold, self.horizontal_threshold
            )

        decision = apply_movement_context(decision, movement_context)

        result = DoorStateResult(
            state=decision.state,
            certainty=decision.certainty,
            confidence=decision.confidence,
            needs_confirmation=decision.needs_confirmation,
            opening_type=decision.opening_type,
            angle=sample.angle(),
            magnitude=sample.magnitude(),
            processing_time_ms=elapsed_ms(start),
            sample=sample,
            movement_context=movement_context,
        )

        logger.debug(
            f"Door state: {result.state} ({result.certainty}, "
            f"{result.confidence:.1f}%) angle={result.angle:.1f} "
            f"calibrated={calibration is not None}"
        )
        return result


@dataclass(frozen=True)
class StateChangeNotification:
    """Payload handed to the broadcast layer on a door state transition."""

    sensor_id: str
    previous_state: Optional[str]
    new_state: str
    certainty: str
    confidence: float
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "sensor_id": self.sensor_id,
            "previous_state": self.previous_state,
            "new_state": self.new_state,
            "certainty": self.certainty,
            "confidence": round(self.confidence, 2),
            "timestamp": self.timestamp.isoformat(),
        }


class StateChangeTracker:
    """
    Caches the last emitted state per sensor and reports transitions.

    The compare-and-set happens inside a single store update, so two
    concurrent classifications of the same sensor cannot both report the
    same transition.
    """

    def __init__(self, store: ShardedTTLStore = None, ttl: float = None):
        self._store = store if store is not None else ShardedTTLStore()
        self._ttl = ttl or config.DOOR_STATE_TTL_SECONDS

    @staticmethod
    def _key(sensor_id) -> str:
        return f"door_state:{sensor_id}"

    def current_state(self, sensor_id) -> Optional[str]:
        return self._store.get(self._key(sensor_id))

    def observe(self, sensor_id, result: DoorStateResult) -> Optional[StateChangeNotification]:
        """
        Record a classification.

        Returns:
            A StateChangeNotification when the state differs from the cached
            one (or nothing was cached), otherwise None.
        """
        seen = {}

        def _swap(previous):
            seen["previous"] = previous
            return result.state

        self._store.update(self._key(sensor_id), _swap, ttl=self._ttl)
        previous = seen["previous"]

        if previous == result.state:
            return None

        notification = StateChangeNotification(
            sensor_id=str(sensor_id),
            previous_state=previous,
            new_state=result.state,
            certainty=result.certainty,
            confidence=result.confidence,
        )
        logger.info(
            f"Door state changed: sensor={sensor_id} "
            f"{previous} -> {result.state} "
            f"(certainty={result.certainty}, confidence={result.confidence:.1f})"
        )
        return notification

    def reset(self, sensor_id) -> None:
        self._store.delete(self._key(sensor_id))
