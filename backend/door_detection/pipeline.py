"""
pipeline.py — Telemetry-to-Door-State Pipeline
===============================================

Wires the parser, router, movement processor and per-sensor state into one
object and exposes the entry point used by the MQTT listener and the HTTP
service.

Flow:
    MQTT telemetry arrives -> process_incoming_telemetry(topic, payload)
    -> MessageRouter parses + dispatches -> MovementProcessor classifies
    -> on a state change: notification handed to every registered listener
       (the MQTT listener publishes it on door/state/changed)

process_incoming_telemetry() never raises: malformed, unknown or failing
messages come back as a "dropped"/"error" outcome and are counted.
"""

import logging
import threading
from collections import deque
from typing import Callable

from . import config
from .calibration import CalibrationRecord, CalibrationStore
from .door_state import StateChangeNotification, StateChangeTracker
from .metrics import DetectionMetrics
from .movement import MovementProcessor
from .registry import SensorRegistry
from .router import MessageRouter, RouteOutcome, default_reading_processors
from .store import ShardedTTLStore

logger = logging.getLogger("door_detection.pipeline")

# Singleton pipeline (initialized on first call)
_pipeline = None
_pipeline_lock = threading.Lock()


class DetectionPipeline:
    """
    End-to-end door detection pipeline with shared per-sensor state.

    Usage:
        pipeline = DetectionPipeline()
        pipeline.registry.register(422801533, "front-door")
        outcome = pipeline.process("pws-packet/gw/422801533/127", payload)
    """

    def __init__(self, registry: SensorRegistry = None, store: ShardedTTLStore = None,
                 notification_history: int = None):
        self.store = store if store is not None else ShardedTTLStore()
        self.registry = registry or SensorRegistry()
        self.calibrations = CalibrationStore(self.store)
        self.metrics = DetectionMetrics(self.store)
        self.tracker = StateChangeTracker(self.store)
        self.movement = MovementProcessor(
            registry=self.registry,
            store=self.store,
            calibrations=self.calibrations,
            metrics=self.metrics,
            tracker=self.tracker,
            on_state_change=self._dispatch_notification,
        )
        self.router = MessageRouter([self.movement, *default_reading_processors()])
        self.recent_notifications = deque(
            maxlen=notification_history or config.METRICS_WINDOW_SIZE
        )
        self._listeners: list = []

    # ── Notifications ──────────────────────────────────────────────

    def add_listener(self, listener: Callable[[StateChangeNotification], None]) -> None:
        """Register a callback invoked for every state change notification."""
        self._listeners.append(listener)

    def _dispatch_notification(self, notification: StateChangeNotification) -> None:
        self.recent_notifications.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                logger.error(f"Notification listener failed: {e}", exc_info=True)

    # ── Processing ─────────────────────────────────────────────────

    def process(self, topic: str, payload) -> RouteOutcome:
        """Parse, route and classify one telemetry message."""
        outcome = self.router.route_raw(topic, payload)
        if outcome.ok and outcome.data_type == "movement":
            state = outcome.result.door_state
            logger.info(
                f"Movement processed: sensor={outcome.result.sensor_id} "
                f"state={state.state} certainty={state.certainty} "
                f"confidence={state.confidence:.1f} "
                f"time={outcome.processing_time_ms:.2f}ms"
            )
        return outcome

    # ── Calibration / state management ─────────────────────────────

    def set_calibration(self, sensor_id, record: CalibrationRecord) -> None:
        self.calibrations.set(sensor_id, record)

    def reset_sensor(self, sensor_id) -> None:
        """Forget every piece of dynamic state of a sensor (not its calibration)."""
        self.movement.reset_sensor_state(sensor_id)
        self.metrics.reset(sensor_id)

    # ── Observability ──────────────────────────────────────────────

    def get_status(self) -> dict:
        return {
            "processing_stats": self.router.get_processing_stats(),
            "drop_counts": self.router.drop_counts,
            "registered_sensors": len(self.registry.sensors()),
            "calibrated_sensors": len(self.calibrations.sensor_ids()),
            "global_metrics": self.metrics.get_global_metrics().to_dict(),
        }


def get_pipeline() -> DetectionPipeline:
    """Get or create the singleton DetectionPipeline."""
    global _pipeline
    if _pipeline is None:
        with _pipeline_lock:
            if _pipeline is None:
                _pipeline = DetectionPipeline()
                logger.info("Detection pipeline initialized")
    return _pipeline


def reset_pipeline() -> None:
    """Drop the singleton (next call to get_pipeline() builds a fresh one)."""
    global _pipeline
    with _pipeline_lock:
        _pipeline = None


def process_incoming_telemetry(topic: str, payload) -> dict:
    """
    Main entry point: process one telemetry message.

    Args:
        topic: MQTT topic.
        payload: Raw payload (bytes / str / dict).

    Returns:
        Outcome dict (status, data_type, error_kind, result, ...).
    """
    return get_pipeline().process(topic, payload).to_dict()
