"""
config.py — Door Detection Configuration Constants
===================================================

Centralizes all thresholds, noise constants, and transport settings used by
the door/window state detection pipeline. Tuning these values adjusts how
quickly the filter reacts, how strict the classification bands are, and how
much per-sensor history is retained.

This door monitoring system uses Wirepas / RuuviTag accelerometer tags:
- Accelerometer axes arrive in device fixed-point units (64 units = 1 g)
- Telemetry arrives over a Wirepas mesh → gateway → MQTT
- One tag is mounted on each monitored door or window leaf
"""

import os

# ═══════════════════════════════════════════════════════════════════
# KALMAN FILTER CONFIGURATION
# ═══════════════════════════════════════════════════════════════════

# Variance added to the error covariance at every predict step.
# A small value models a mostly static door between readings.
KALMAN_PROCESS_NOISE = 0.01

# Variance of the accelerometer measurement itself.
# 0.1 makes each new reading move the estimate noticeably but not fully.
KALMAN_MEASUREMENT_NOISE = 0.1

# Error covariance assigned on the first observation of a sensor axis.
KALMAN_INITIAL_ERROR_COVARIANCE = 1.0

# ═══════════════════════════════════════════════════════════════════
# ACCELEROMETER NORMALIZATION
# ═══════════════════════════════════════════════════════════════════

# Device fixed-point scale: raw units per 1 g.
DEVICE_SCALE = 64.0

# Lower bound for the magnitude used as a denominator in angle().
MAGNITUDE_EPSILON = 0.001

# A resting tag only measures gravity, so 1 g is the ideal magnitude.
IDEAL_MAGNITUDE = 1.0

# Magnitudes inside this band are plausible gravity readings (mounting tilt).
ACCEPTABLE_MAGNITUDE_RANGE = (0.8, 1.2)

# Clarity never drops below this value inside the acceptable band.
CLARITY_FLOOR = 0.8

# ═══════════════════════════════════════════════════════════════════
# SIGNAL QUALITY
# ═══════════════════════════════════════════════════════════════════

# Widening bands around 1 g → magnitude quality labels.
MAGNITUDE_QUALITY_BANDS = (
    ("excellent", 0.8, 1.2),
    ("good", 0.6, 1.4),
    ("acceptable", 0.4, 1.6),
)

# Deviation-from-1g limits → stability labels.
STABILITY_BANDS = (
    ("very_stable", 0.05),
    ("stable", 0.1),
    ("moderately_stable", 0.2),
)

# Noise ratio above which the signal is considered noisy.
NOISE_THRESHOLD = 0.3

# Sum of absolute axis values (g) below which the tag looks disconnected.
LOW_ACTIVITY_THRESHOLD = 0.5

# Clarity below which a recalibration is recommended.
RECALIBRATION_CLARITY_THRESHOLD = 0.5

# ═══════════════════════════════════════════════════════════════════
# DOOR STATE CLASSIFICATION
# ═══════════════════════════════════════════════════════════════════

# Angle (degrees from vertical) at or below which the leaf is closed.
VERTICAL_THRESHOLD_DEG = 15.0

# Angle above which the leaf is considered open.
# Between the two thresholds the reading is ambiguous.
HORIZONTAL_THRESHOLD_DEG = 30.0

# Calibrated path confidences.
CALIBRATED_CLOSED_CONFIDENCE = 95.0
CALIBRATED_OPEN_CONFIDENCE = 85.0

# A calibrated reading farther than tolerance × this multiplier
# is "clearly open" and asks for a manual confirmation.
CONFIRMATION_TOLERANCE_MULTIPLIER = 1.5

# Angle path confidences.
ANGLE_CLOSED_MAX_CONFIDENCE = 95.0
ANGLE_OPEN_MAX_CONFIDENCE = 90.0
AMBIGUOUS_CONFIDENCE = 60.0

# Open-band cut-offs: confidence > 80 → "opened", > 85 → PROBABLE.
OPENED_CONFIDENCE_THRESHOLD = 80.0
PROBABLE_CONFIDENCE_THRESHOLD = 85.0

# Clarity above which a closed angle reading is CERTAIN.
CERTAIN_QUALITY_THRESHOLD = 0.8

# Movement context: motion magnitude (device units) that corroborates a
# genuine transition, the confidence multiplier applied, and its cap.
MOVEMENT_MAGNITUDE_THRESHOLD = 20.0
MOVEMENT_CONFIDENCE_BOOST = 1.1
MOVEMENT_CONFIDENCE_CAP = 100.0

DEFAULT_OPENING_TYPE = "door"

# ═══════════════════════════════════════════════════════════════════
# CALIBRATION
# ═══════════════════════════════════════════════════════════════════

# Default tolerance (device units) around the closed reference.
DEFAULT_TOLERANCE = 2.0

# Dynamic reference drift adaptation: 90 % old / 10 % new.
DYNAMIC_REFERENCE_WEIGHT = 0.1

# Largest single-axis reference change a dynamic update may apply.
DYNAMIC_REFERENCE_MAX_CHANGE = 0.5

# Whether confident closed readings feed the dynamic reference.
DYNAMIC_CALIBRATION_ENABLED = (
    os.environ.get("DOOR_DETECTION_DYNAMIC_CALIBRATION", "1") == "1"
)

# Requirements for calibrating from a series of resting positions.
CALIBRATION_MIN_SAMPLES = 3
CALIBRATION_MAX_VARIANCE = 1.0
CALIBRATION_POSITION_RANGE = (-127, 127)

# ═══════════════════════════════════════════════════════════════════
# METRICS
# ═══════════════════════════════════════════════════════════════════

# Sliding window size for processing times and confidence scores.
METRICS_WINDOW_SIZE = 100

# Per-classification latency budget (ms). Slower detections are logged.
PROCESSING_TIME_BUDGET_MS = 25.0

# Minimum recorded detections before an accuracy estimate is produced.
ACCURACY_MIN_SAMPLES = 10

# ═══════════════════════════════════════════════════════════════════
# PER-SENSOR STATE STORE
# ═══════════════════════════════════════════════════════════════════

# Kalman states and last positions expire after 1 h of inactivity;
# the filter then cold-starts on the next reading.
SENSOR_STATE_TTL_SECONDS = 3600

# Cached door state used for change detection.
DOOR_STATE_TTL_SECONDS = 86400

# Number of independently locked shards.
STORE_SHARD_COUNT = 16

# Writes per shard between full sweeps of its expired entries.
STORE_SWEEP_INTERVAL = 1000

# Register unknown source addresses on first sight instead of dropping them.
AUTO_REGISTER_SENSORS = (
    os.environ.get("DOOR_DETECTION_AUTO_REGISTER", "0") == "1"
)

# ═══════════════════════════════════════════════════════════════════
# TELEMETRY FORMAT
# ═══════════════════════════════════════════════════════════════════

# Compact topic: pws-packet/<gateway>/<sourceAddress>/<sensorType>
COMPACT_TOPIC_PREFIX = "pws-packet/"

# Legacy topic: gw-event/status/<sourceAddress>
LEGACY_TOPIC_PREFIX = "gw-event/"
LEGACY_TOPIC_PATTERN = r"gw-event/status/(\d+)"

# Sensor type codes
SENSOR_TYPE_UNKNOWN = 0
SENSOR_TYPE_TEMPERATURE = 112
SENSOR_TYPE_HUMIDITY = 114
SENSOR_TYPE_PRESSURE = 116
SENSOR_TYPE_MOVEMENT = 127
SENSOR_TYPE_BATTERY = 142
SENSOR_TYPE_NEIGHBORS = 193

SENSOR_TYPE_NAMES = {
    SENSOR_TYPE_TEMPERATURE: "temperature",
    SENSOR_TYPE_HUMIDITY: "humidity",
    SENSOR_TYPE_PRESSURE: "pressure",
    SENSOR_TYPE_MOVEMENT: "movement",
    SENSOR_TYPE_BATTERY: "battery",
    SENSOR_TYPE_NEIGHBORS: "neighbors",
}

# Legacy payload keys, in type-inference priority order.
LEGACY_DATA_KEYS = (
    ("temperature", SENSOR_TYPE_TEMPERATURE),
    ("humidity", SENSOR_TYPE_HUMIDITY),
    ("pressure", SENSOR_TYPE_PRESSURE),
    ("accelerometer", SENSOR_TYPE_MOVEMENT),
    ("batteryVoltage", SENSOR_TYPE_BATTERY),
)

# Advisory validation ranges (violations are warnings, not failures)
TEMPERATURE_RANGE = (-50.0, 100.0)
HUMIDITY_RANGE = (0.0, 100.0)
MAX_AXIS_MAGNITUDE = 2000

MOVEMENT_AXES = ("x_axis", "y_axis", "z_axis")

# ═══════════════════════════════════════════════════════════════════
# MQTT TRANSPORT
# ═══════════════════════════════════════════════════════════════════

MQTT_BROKER_HOST = os.environ.get("MQTT_BROKER_HOST", "localhost")
MQTT_BROKER_PORT = int(os.environ.get("MQTT_BROKER_PORT", "1883"))
MQTT_CLIENT_ID = os.environ.get("MQTT_CLIENT_ID", "door-detection-core")

# Topics the listener subscribes to.
MQTT_SUBSCRIBE_TOPICS = ["pws-packet/#", "gw-event/status/#"]

# State-change notifications are published here for the broadcast layer.
MQTT_NOTIFICATION_TOPIC = os.environ.get(
    "MQTT_NOTIFICATION_TOPIC", "door/state/changed"
)

# Door detection is critical: at-least-once delivery.
MQTT_QOS = 1

# ═══════════════════════════════════════════════════════════════════
# SERVICE / LOGGING
# ═══════════════════════════════════════════════════════════════════

SERVICE_PORT = int(os.environ.get("DOOR_DETECTION_SERVICE_PORT", "5060"))

# Log level for the pipeline (DEBUG, INFO, WARNING, ERROR, CRITICAL)
LOG_LEVEL = os.environ.get("DOOR_DETECTION_LOG_LEVEL", "INFO")
