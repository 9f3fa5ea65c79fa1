"""
metrics.py — Detection Metrics
===============================

Rolling per-sensor aggregates used for health and performance monitoring:

    total_detections          — every classification ever recorded
    processing_times          — last N processing times (ms)
    confidence_scores         — last N confidence scores
    average_processing_time   — mean of the window
    average_confidence        — mean of the window
    state_counts              — closed / opened / probably_opened counters

Windows are fixed-capacity ring buffers (deque with maxlen), so the oldest
entry is evicted automatically once N = 100 is reached.

Global metrics are computed at read time by merging every sensor's entry,
which keeps the hot path (one sensor update) free of any shared counter.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from . import config
from .door_state import STATES, DoorStateResult
from .store import ShardedTTLStore

logger = logging.getLogger("door_detection.metrics")

_KEY_PREFIX = "detection_metrics:"


class SensorMetrics:
    """
    Mutable aggregate for one sensor. Only touched inside a store update.

    Attributes:
        total_detections (int): Lifetime detection count.
        slow_detections (int): Detections above the latency budget.
        processing_times (deque): Window of processing times (ms).
        confidence_scores (deque): Window of confidence scores.
        states (deque): Window of emitted states (accuracy estimate).
        state_counts (dict): Lifetime per-state counters.
    """

    def __init__(self, window_size: int):
        self.total_detections = 0
        self.slow_detections = 0
        self.processing_times = deque(maxlen=window_size)
        self.confidence_scores = deque(maxlen=window_size)
        self.states = deque(maxlen=window_size)
        self.state_counts = {state: 0 for state in STATES}

    def record(self, result: DoorStateResult, budget_ms: float) -> None:
        self.total_detections += 1
        self.processing_times.append(result.processing_time_ms)
        self.confidence_scores.append(result.confidence)
        self.states.append(result.state)
        self.state_counts[result.state] = self.state_counts.get(result.state, 0) + 1
        if result.processing_time_ms > budget_ms:
            self.slow_detections += 1


@dataclass(frozen=True)
class DetectionMetricsSnapshot:
    """Read-only view of per-sensor or global metrics."""

    total_detections: int = 0
    processing_times: tuple = ()
    confidence_scores: tuple = ()
    average_processing_time: float = 0.0
    average_confidence: float = 0.0
    state_counts: dict = field(default_factory=lambda: {s: 0 for s in STATES})
    slow_detections: int = 0
    sensor_count: int = 0

    def to_dict(self) -> dict:
        return {
            "total_detections": self.total_detections,
            "average_processing_time": round(self.average_processing_time, 4),
            "average_confidence": round(self.average_confidence, 2),
            "state_counts": dict(self.state_counts),
            "slow_detections": self.slow_detections,
            "window_size": len(self.processing_times),
            "sensor_count": self.sensor_count,
        }


def _mean(values) -> float:
    return float(np.mean(values)) if len(values) else 0.0


class DetectionMetrics:
    """
    Per-sensor metrics stored in the sharded store, merged on demand.

    Attributes:
        window_size (int): Ring buffer capacity.
        budget_ms (float): Processing time above which a warning is logged.
    """

    def __init__(self, store: ShardedTTLStore = None, window_size: int = None,
                 budget_ms: float = None):
        self._store = store if store is not None else ShardedTTLStore()
        self.window_size = window_size or config.METRICS_WINDOW_SIZE
        self.budget_ms = budget_ms or config.PROCESSING_TIME_BUDGET_MS

    @staticmethod
    def _key(sensor_id) -> str:
        return f"{_KEY_PREFIX}{sensor_id}"

    def record_detection(self, sensor_id, result: DoorStateResult) -> None:
        """Record one classification for a sensor (atomic per sensor)."""

        def _record(metrics):
            metrics = metrics or SensorMetrics(self.window_size)
            metrics.record(result, self.budget_ms)
            return metrics

        self._store.update(self._key(sensor_id), _record)

        if result.processing_time_ms > self.budget_ms:
            logger.warning(
                f"Slow door detection: sensor={sensor_id} "
                f"processing_time_ms={result.processing_time_ms:.2f} "
                f"threshold={self.budget_ms}"
            )

    def _snapshot_of(self, metrics: Optional[SensorMetrics]) -> DetectionMetricsSnapshot:
        if metrics is None:
            return DetectionMetricsSnapshot()
        times = tuple(metrics.processing_times)
        scores = tuple(metrics.confidence_scores)
        return DetectionMetricsSnapshot(
            total_detections=metrics.total_detections,
            processing_times=times,
            confidence_scores=scores,
            average_processing_time=_mean(times),
            average_confidence=_mean(scores),
            state_counts=dict(metrics.state_counts),
            slow_detections=metrics.slow_detections,
            sensor_count=1,
        )

    def get_metrics(self, sensor_id) -> DetectionMetricsSnapshot:
        # Copied under the shard lock
        return self._store.read(self._key(sensor_id), self._snapshot_of)

    def sensor_ids(self) -> list:
        return [key[len(_KEY_PREFIX):] for key in self._store.keys(_KEY_PREFIX)]

    def get_global_metrics(self) -> DetectionMetricsSnapshot:
        """Merge every sensor's metrics into one snapshot."""
        total = 0
        slow = 0
        times = []
        scores = []
        counts = {state: 0 for state in STATES}
        sensors = 0

        for sensor_id in self.sensor_ids():
            snapshot = self.get_metrics(sensor_id)
            if snapshot.total_detections == 0:
                continue
            sensors += 1
            total += snapshot.total_detections
            slow += snapshot.slow_detections
            times.extend(snapshot.processing_times)
            scores.extend(snapshot.confidence_scores)
            for state, count in snapshot.state_counts.items():
                counts[state] = counts.get(state, 0) + count

        return DetectionMetricsSnapshot(
            total_detections=total,
            processing_times=tuple(times),
            confidence_scores=tuple(scores),
            average_processing_time=_mean(times),
            average_confidence=_mean(scores),
            state_counts=counts,
            slow_detections=slow,
            sensor_count=sensors,
        )

    def estimate_accuracy(self, sensor_id) -> dict:
        """
        Heuristic accuracy estimate from the recent window.

        stability = 1 - state_changes / n
        accuracy  = min(0.95, avg_confidence × stability × 1.1)

        Returns zeros until config.ACCURACY_MIN_SAMPLES detections exist.
        """
        states, scores = self._store.read(
            self._key(sensor_id),
            lambda m: (list(m.states), list(m.confidence_scores)) if m else ([], []),
        )

        if len(states) < config.ACCURACY_MIN_SAMPLES:
            return {"accuracy": 0.0, "confidence": 0.0, "stability": 0.0,
                    "samples": len(states), "state_changes": 0}

        changes = sum(1 for prev, cur in zip(states, states[1:]) if prev != cur)
        stability = 1.0 - changes / len(states)
        avg_confidence = _mean(scores) / 100.0
        accuracy = min(0.95, avg_confidence * stability * 1.1)

        return {
            "accuracy": round(accuracy * 100, 2),
            "confidence": round(avg_confidence * 100, 2),
            "stability": round(stability * 100, 2),
            "samples": len(states),
            "state_changes": changes,
        }

    def reset(self, sensor_id=None) -> None:
        """Forget one sensor's metrics, or every sensor's when None."""
        if sensor_id is not None:
            self._store.delete(self._key(sensor_id))
            return
        for sid in self.sensor_ids():
            self._store.delete(self._key(sid))
        logger.info("Detection metrics reset")
