"""
backend.door_detection — Door/Window State Detection Core
==========================================================

This package turns accelerometer telemetry from wireless mesh tags mounted
on doors and windows into door states (closed / opened / probably_opened)
with a certainty tier and a confidence score.

Architecture:
    Accelerometer tag → Wirepas mesh → Gateway → MQTT
                                                  ↓
                                       Door Detection Core:
                                         1. Telemetry parsing + routing
                                         2. Per-axis Kalman filtering
                                         3. Normalization to g-force
                                         4. Signal quality scoring
                                         5. Calibrated / angle classification
                                         6. Metrics + state change detection
                                         7. Dynamic calibration
                                                  ↓
                              State change → MQTT (door/state/changed)

Modules:
    config             — Thresholds, noise parameters and system constants
    errors             — Drop-path error taxonomy
    messages           — Telemetry parser and message validation
    router             — Per-type dispatch with failure isolation
    kalman             — Per-axis Kalman filter
    normalizer         — Device units → g, magnitude and angle
    signal_quality     — Advisory signal quality scoring
    store              — Sharded per-sensor TTL state store
    calibration        — Closed-position calibration and drift adaptation
    door_state         — Door state classification and change tracking
    metrics            — Rolling detection metrics
    registry           — Source address → sensor lookup
    movement           — Movement telemetry processor
    pipeline           — End-to-end telemetry-to-state pipeline
    mqtt_listener      — MQTT subscriber / notification publisher
    detection_service  — Flask HTTP service
    utils              — Shared helpers and logging setup
"""

__version__ = "1.0.0"
