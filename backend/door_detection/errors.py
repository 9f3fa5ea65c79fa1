"""
errors.py — Drop-Path Error Taxonomy
=====================================

Every way a telemetry message can be dropped has its own exception type.
They are raised by the parser and processors and caught by the router,
which turns them into countable outcomes; none of them escapes the router.

Kinds:
    malformed_payload        — payload is not a JSON object / topic unusable
    missing_movement_data    — movement message without usable axis fields
    unknown_sensor_type      — sensor type code has no processor
    unknown_sensor_identity  — source address not in the sensor registry
"""


class DetectionError(Exception):
    """Base class for local, non-fatal per-message failures."""

    kind = "detection_error"

    def __init__(self, message: str, source_address: int = None):
        super().__init__(message)
        self.source_address = source_address


class MalformedPayload(DetectionError):
    kind = "malformed_payload"


class MissingMovementData(DetectionError):
    kind = "missing_movement_data"


class UnknownSensorType(DetectionError):
    kind = "unknown_sensor_type"


class UnknownSensorIdentity(DetectionError):
    kind = "unknown_sensor_identity"


class CalibrationError(DetectionError):
    """Calibration request rejected (unstable or out-of-range positions)."""

    kind = "calibration_error"
