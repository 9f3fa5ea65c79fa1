"""
router.py — Telemetry Message Routing
======================================

Dispatches parsed telemetry to the processor registered for its data type.
Movement messages enter the door detection pipeline; temperature, humidity,
pressure and battery readings are only validated, logged and counted here
(their storage belongs to the hosting layer); unknown types are dropped.

Isolation guarantee:
    route() never raises. Every dispatch is wrapped so that one failing
    processor cannot stop the current or any later message. Each outcome is
    returned as a RouteOutcome and every drop increments a per-kind counter,
    so data loss stays observable even though no caller sees an exception.

Outcome statuses:
    processed — the processor completed
    dropped   — a DetectionError (malformed, missing data, unknown type or
                sensor) ended processing early
    error     — an unexpected exception inside a processor
"""

import logging
import threading
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Optional

from .errors import DetectionError, MalformedPayload, UnknownSensorType
from .messages import RawTelemetryMessage, TelemetryParser
from .utils import elapsed_ms, utc_now

logger = logging.getLogger("door_detection.router")

PROCESSED = "processed"
DROPPED = "dropped"
ERROR = "error"

PROCESSOR_ERROR = "processor_error"


@dataclass(frozen=True)
class RouteOutcome:
    status: str
    data_type: str
    source_address: Optional[int] = None
    error_kind: Optional[str] = None
    detail: Optional[str] = None
    result: Any = None
    processing_time_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == PROCESSED

    def to_dict(self) -> dict:
        result = self.result
        if hasattr(result, "to_dict"):
            result = result.to_dict()
        return {
            "status": self.status,
            "data_type": self.data_type,
            "source_address": self.source_address,
            "error_kind": self.error_kind,
            "detail": self.detail,
            "result": result,
            "processing_time_ms": round(self.processing_time_ms, 3),
        }


class ProcessorStats:
    """
    Success / error counters and timing for one processor.

    Attributes:
        processed_count (int): Successful runs.
        error_count (int): Runs that raised an unexpected exception.
        dropped_count (int): Runs ended early by a DetectionError.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        self.processed_count = 0
        self.error_count = 0
        self.dropped_count = 0
        self.total_processing_time_ms = 0.0
        self.average_processing_time_ms = 0.0
        self.last_processed_at = None
        self.last_error_at = None
        self.last_error_message = None

    def record_success(self, processing_time_ms: float) -> None:
        with self._lock:
            self.processed_count += 1
            self.total_processing_time_ms += processing_time_ms
            self.average_processing_time_ms = (
                self.total_processing_time_ms / self.processed_count
            )
            self.last_processed_at = utc_now()

    def record_drop(self) -> None:
        with self._lock:
            self.dropped_count += 1

    def record_error(self, error: Exception) -> None:
        with self._lock:
            self.error_count += 1
            self.last_error_at = utc_now()
            self.last_error_message = str(error)

    @property
    def success_rate(self) -> float:
        """Percentage of successful runs among successes and errors."""
        total = self.processed_count + self.error_count
        return (self.processed_count / total) * 100 if total > 0 else 100.0

    def to_dict(self) -> dict:
        return {
            "processed_count": self.processed_count,
            "error_count": self.error_count,
            "dropped_count": self.dropped_count,
            "total_processing_time_ms": round(self.total_processing_time_ms, 3),
            "average_processing_time_ms": round(self.average_processing_time_ms, 3),
            "last_processed_at": (self.last_processed_at.isoformat()
                                  if self.last_processed_at else None),
            "last_error_at": self.last_error_at.isoformat() if self.last_error_at else None,
            "last_error_message": self.last_error_message,
            "success_rate": round(self.success_rate, 2),
        }


class BaseProcessor:
    """Base class for type-specific processors."""

    data_type = "unknown"

    def __init__(self):
        self.stats = ProcessorStats()

    def process(self, message: RawTelemetryMessage, started_at: float = None) -> Any:
        raise NotImplementedError


class ReadingProcessor(BaseProcessor):
    """
    Processor for scalar environmental readings outside the detection core.

    Extracts the value, logs it and counts it; persistence is left to the
    hosting layer.
    """

    def __init__(self, data_type: str, extractor: str):
        super().__init__()
        self.data_type = data_type
        self._extractor = extractor

    def process(self, message: RawTelemetryMessage, started_at: float = None) -> dict:
        value = getattr(message, self._extractor)()
        if value is None:
            raise DetectionError(
                f"No {self.data_type} value in message", message.source_address
            )
        logger.debug(
            f"{self.data_type} reading: address={message.source_address} value={value}"
        )
        return {"sensor_type": self.data_type, "value": value}


class NeighborsProcessor(BaseProcessor):
    """Mesh neighbor discovery data: logged only."""

    data_type = "neighbors"

    def process(self, message: RawTelemetryMessage, started_at: float = None) -> dict:
        neighbors = message.payload.get("data", message.payload)
        logger.debug(
            f"Neighbor data received: address={message.source_address} "
            f"neighbors={neighbors}"
        )
        return {"sensor_type": self.data_type}


def default_reading_processors() -> list:
    return [
        ReadingProcessor("temperature", "extract_temperature"),
        ReadingProcessor("humidity", "extract_humidity"),
        ReadingProcessor("pressure", "extract_pressure"),
        ReadingProcessor("battery", "extract_battery_voltage"),
        NeighborsProcessor(),
    ]


class MessageRouter:
    """
    Parses and dispatches telemetry with per-message isolation.

    Usage:
        router = MessageRouter([movement_processor, *default_reading_processors()])
        outcome = router.route_raw(topic, payload)
    """

    def __init__(self, processors: list, parser: TelemetryParser = None):
        self.parser = parser or TelemetryParser()
        self._processors = {p.data_type: p for p in processors}
        self._drop_counts = Counter()
        self._lock = threading.Lock()

    def _count_drop(self, kind: str) -> None:
        with self._lock:
            self._drop_counts[kind] += 1

    @property
    def drop_counts(self) -> dict:
        with self._lock:
            return dict(self._drop_counts)

    def route_raw(self, topic: str, raw) -> RouteOutcome:
        """Parse then route; parse failures become dropped outcomes."""
        start = time.perf_counter()
        try:
            message = self.parser.parse(topic, raw)
            self.parser.validate(message)
        except DetectionError as e:
            self._count_drop(e.kind)
            logger.warning(f"Dropped telemetry on {topic!r}: {e.kind} — {e}")
            return RouteOutcome(status=DROPPED, data_type="unknown",
                                error_kind=e.kind, detail=str(e),
                                processing_time_ms=elapsed_ms(start))
        except Exception as e:
            self._count_drop(MalformedPayload.kind)
            logger.error(f"Unparseable telemetry on {topic!r}: {e}", exc_info=True)
            return RouteOutcome(status=DROPPED, data_type="unknown",
                                error_kind=MalformedPayload.kind, detail=str(e),
                                processing_time_ms=elapsed_ms(start))
        return self.route(message, started_at=start)

    def route(self, message: RawTelemetryMessage, started_at: float = None) -> RouteOutcome:
        """
        Dispatch one parsed message to its processor.

        Args:
            message: Parsed telemetry.
            started_at: time.perf_counter() value at receipt (defaults to now).

        Returns:
            RouteOutcome; never raises.
        """
        start = time.perf_counter() if started_at is None else started_at
        data_type = message.data_type
        processor = self._processors.get(data_type)

        if processor is None:
            error = UnknownSensorType(
                f"No processor for sensor type {message.sensor_type}",
                message.source_address,
            )
            logger.warning(
                f"Unknown telemetry type received: topic={message.topic} "
                f"address={message.source_address} type={message.sensor_type}"
            )
            self._count_drop(error.kind)
            return RouteOutcome(status=DROPPED, data_type=data_type,
                                source_address=message.source_address,
                                error_kind=error.kind, detail=str(error),
                                processing_time_ms=elapsed_ms(start))

        try:
            result = processor.process(message, started_at=start)
        except DetectionError as e:
            processor.stats.record_drop()
            self._count_drop(e.kind)
            logger.warning(
                f"Dropped {data_type} message from {message.source_address}: "
                f"{e.kind} — {e}"
            )
            return RouteOutcome(status=DROPPED, data_type=data_type,
                                source_address=message.source_address,
                                error_kind=e.kind, detail=str(e),
                                processing_time_ms=elapsed_ms(start))
        except Exception as e:
            processor.stats.record_error(e)
            self._count_drop(PROCESSOR_ERROR)
            logger.error(
                f"Error processing {data_type} message from "
                f"{message.source_address}: {e}",
                exc_info=True,
            )
            return RouteOutcome(status=ERROR, data_type=data_type,
                                source_address=message.source_address,
                                error_kind=PROCESSOR_ERROR, detail=str(e),
                                processing_time_ms=elapsed_ms(start))

        processing_time = elapsed_ms(start)
        processor.stats.record_success(processing_time)
        logger.debug(
            f"Telemetry routed: type={data_type} address={message.source_address} "
            f"processing_time_ms={processing_time:.2f}"
        )
        return RouteOutcome(status=PROCESSED, data_type=data_type,
                            source_address=message.source_address,
                            result=result, processing_time_ms=processing_time)

    def get_processing_stats(self) -> dict:
        return {name: p.stats.to_dict() for name, p in self._processors.items()}

    def reset_stats(self) -> None:
        for processor in self._processors.values():
            processor.stats.reset()
        with self._lock:
            self._drop_counts.clear()
