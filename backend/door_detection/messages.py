"""
messages.py — Telemetry Message Parsing
========================================

Turns an MQTT topic + raw payload into an immutable RawTelemetryMessage
tagged with a sensor type code.

Topic formats:
    Compact:  pws-packet/<gateway>/<sourceAddress>/<sensorType>
              Address and type are the last two path segments.
    Legacy:   gw-event/status/<sourceAddress>
              Address comes from the topic; the type is inferred from which
              field the payload's "data" object carries (temperature,
              humidity, pressure, accelerometer, batteryVoltage — in that
              priority order), 0 when none match.
    Other:    sourceAddress / sensorType read from the payload itself.

A payload that is not a JSON object raises MalformedPayload; the message is
dropped, never retried, because a fresh sample arrives shortly.

validate() performs advisory range checks only: raw sensor noise is
expected, so violations come back as warnings, never as failures.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from . import config
from .errors import MalformedPayload
from .utils import to_number, utc_now

logger = logging.getLogger("door_detection.messages")

_LEGACY_TOPIC_RE = re.compile(config.LEGACY_TOPIC_PATTERN)


@dataclass(frozen=True)
class RawTelemetryMessage:
    """
    One parsed telemetry message.

    Attributes:
        topic: MQTT topic.
        payload: Decoded JSON object.
        source_address: Integer sensor address on the mesh.
        sensor_type: Sensor type code (127 = movement, 0 = unknown).
        tx_time_ms: Transmit timestamp / queue delay, when provided.
        event_id: Sequence / event id, when provided.
        received_at: Parse time.
    """

    topic: str
    payload: dict
    source_address: int
    sensor_type: int
    tx_time_ms: Optional[int] = None
    event_id: Optional[int] = None
    received_at: datetime = field(default_factory=utc_now)

    @property
    def data_type(self) -> str:
        return config.SENSOR_TYPE_NAMES.get(self.sensor_type, "unknown")

    @property
    def is_movement(self) -> bool:
        return self.sensor_type == config.SENSOR_TYPE_MOVEMENT

    def _data(self) -> dict:
        data = self.payload.get("data")
        return data if isinstance(data, dict) else self.payload

    def _extract(self, type_code: int, key: str) -> Optional[float]:
        if self.sensor_type != type_code:
            return None
        value = self._data().get(key)
        if value is None:
            value = self.payload.get(key)
        return to_number(value)

    def extract_temperature(self) -> Optional[float]:
        return self._extract(config.SENSOR_TYPE_TEMPERATURE, "temperature")

    def extract_humidity(self) -> Optional[float]:
        return self._extract(config.SENSOR_TYPE_HUMIDITY, "humidity")

    def extract_pressure(self) -> Optional[float]:
        return self._extract(config.SENSOR_TYPE_PRESSURE, "pressure")

    def extract_battery_voltage(self) -> Optional[float]:
        return self._extract(config.SENSOR_TYPE_BATTERY, "batteryVoltage")

    def extract_movement_data(self) -> Optional[dict]:
        """
        Movement fields of a movement message.

        Returns:
            Dict with state, x_axis, y_axis, z_axis, move_duration,
            move_number (values may be None), or None for other types.
        """
        if not self.is_movement:
            return None

        data = self._data()
        accelerometer = data.get("accelerometer")
        if isinstance(accelerometer, dict):
            data = {**data, **accelerometer}

        return {
            "state": data.get("state"),
            "x_axis": data.get("x_axis"),
            "y_axis": data.get("y_axis"),
            "z_axis": data.get("z_axis"),
            "move_duration": data.get("move_duration"),
            "move_number": data.get("move_number"),
        }


def _decode(raw) -> dict:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayload(f"Payload is not UTF-8: {e}")
    if not isinstance(raw, str):
        raise MalformedPayload(f"Unsupported payload type {type(raw).__name__}")
    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise MalformedPayload(f"Invalid JSON: {e}")
    if not isinstance(payload, dict):
        raise MalformedPayload("Payload is not a JSON object")
    return payload


def _optional_int(value) -> Optional[int]:
    number = to_number(value)
    return None if number is None else int(number)


def determine_sensor_type(data: dict) -> int:
    """Infer the sensor type code from legacy data keys (priority order)."""
    for key, type_code in config.LEGACY_DATA_KEYS:
        if key in data and data[key] is not None:
            return type_code
    return config.SENSOR_TYPE_UNKNOWN


class TelemetryParser:
    """Parses topic + payload into RawTelemetryMessage."""

    def parse(self, topic: str, raw) -> RawTelemetryMessage:
        """
        Parse one MQTT message.

        Args:
            topic: MQTT topic string.
            raw: Payload as bytes, str, or an already decoded dict.

        Returns:
            RawTelemetryMessage.

        Raises:
            MalformedPayload: Payload is not a JSON object or the compact
                topic does not carry integer address / type segments.
        """
        try:
            payload = _decode(raw)
        except MalformedPayload:
            preview = raw[:100] if isinstance(raw, (str, bytes, bytearray)) else raw
            logger.warning(f"Failed to decode telemetry on {topic}: preview={preview!r}")
            raise

        if topic.startswith(config.COMPACT_TOPIC_PREFIX):
            return self._parse_compact(topic, payload)

        if topic.startswith(config.LEGACY_TOPIC_PREFIX):
            return self._parse_legacy(topic, payload)

        return RawTelemetryMessage(
            topic=topic,
            payload=payload,
            source_address=_optional_int(payload.get("sourceAddress")) or 0,
            sensor_type=_optional_int(payload.get("sensorType")) or 0,
        )

    @staticmethod
    def _parse_compact(topic: str, payload: dict) -> RawTelemetryMessage:
        parts = topic.rstrip("/").split("/")
        if len(parts) < 3:
            raise MalformedPayload(f"Compact topic too short: {topic}")
        try:
            source_address = int(parts[-2])
            sensor_type = int(parts[-1])
        except ValueError:
            raise MalformedPayload(f"Non-numeric address/type in topic: {topic}")

        return RawTelemetryMessage(
            topic=topic,
            payload=payload,
            source_address=source_address,
            sensor_type=sensor_type,
            tx_time_ms=_optional_int(payload.get("tx_time_ms_epoch")),
            event_id=_optional_int(payload.get("event_id")),
        )

    @staticmethod
    def _parse_legacy(topic: str, payload: dict) -> RawTelemetryMessage:
        match = _LEGACY_TOPIC_RE.search(topic)
        source_address = int(match.group(1)) if match else 0

        data = payload.get("data")
        sensor_type = determine_sensor_type(data if isinstance(data, dict) else {})

        return RawTelemetryMessage(
            topic=topic,
            payload=payload,
            source_address=source_address,
            sensor_type=sensor_type,
            tx_time_ms=_optional_int(payload.get("queueDelay")),
            event_id=_optional_int(payload.get("eventId")),
        )

    def validate(self, message: RawTelemetryMessage) -> list:
        """
        Advisory checks on a parsed message.

        Returns:
            List of warning strings (empty when everything looks plausible).
        """
        warnings = []

        if not message.topic:
            warnings.append("Topic is required")
        if not message.payload:
            warnings.append("Payload is required")
        if message.source_address <= 0:
            warnings.append("Valid source address is required")

        data_type = message.data_type
        if data_type == "temperature":
            value = message.extract_temperature()
            low, high = config.TEMPERATURE_RANGE
            if value is None:
                warnings.append("Temperature data is missing or invalid")
            elif not low <= value <= high:
                warnings.append(f"Temperature value out of range ({low}°C to {high}°C)")

        elif data_type == "humidity":
            value = message.extract_humidity()
            low, high = config.HUMIDITY_RANGE
            if value is None:
                warnings.append("Humidity data is missing or invalid")
            elif not low <= value <= high:
                warnings.append(f"Humidity value out of range ({low}% to {high}%)")

        elif data_type == "movement":
            movement = message.extract_movement_data() or {}
            if all(movement.get(axis) is None for axis in config.MOVEMENT_AXES):
                warnings.append("Movement data is missing or invalid")
            for axis in config.MOVEMENT_AXES:
                value = to_number(movement.get(axis))
                if value is not None and abs(value) > config.MAX_AXIS_MAGNITUDE:
                    warnings.append(f"Accelerometer {axis} value out of range")

        if warnings:
            logger.warning(
                f"Telemetry validation warnings for address "
                f"{message.source_address}: {warnings}"
            )
        return warnings
