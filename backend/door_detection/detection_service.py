"""
detection_service.py — Door Detection HTTP Service (Flask)
===========================================================

Thin HTTP surface over the detection pipeline for the hosting application
(sensor registration, calibration, metrics) and for replaying telemetry
without a broker.

Endpoints:
    GET    /health                      — Service health check
    POST   /process                     — Process one {topic, payload} message
    POST   /sensors                     — Register a source address
    DELETE /sensors/<sensor_id>/state   — Reset a sensor's dynamic state
    GET    /calibration/<sensor_id>     — Current calibration record
    PUT    /calibration/<sensor_id>     — Set or compute a calibration
    GET    /metrics                     — Global detection metrics
    GET    /metrics/<sensor_id>         — Per-sensor metrics + accuracy
    GET    /stats                       — Router statistics and drop counts

Run:
    python -m backend.door_detection.detection_service
    # Starts on port 5060 by default (DOOR_DETECTION_SERVICE_PORT)
"""

import logging

from flask import Flask, jsonify, request

from . import config
from .calibration import CalibrationRecord
from .errors import CalibrationError
from .pipeline import get_pipeline
from .utils import setup_logging

setup_logging()

logger = logging.getLogger("door_detection.service")
app = Flask(__name__)


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "OK",
        "service": "Door Detection Core",
    })


@app.route("/process", methods=["POST"])
def process():
    """
    Process one telemetry message.

    Expects JSON body:
        { "topic": "pws-packet/<gw>/<address>/<type>", "payload": {...} }

    Returns:
        Route outcome (status, data_type, error_kind, result).
    """
    data = request.get_json(force=True, silent=True)
    if not data or "topic" not in data:
        return jsonify({"error": "JSON body with 'topic' and 'payload' required"}), 400

    outcome = get_pipeline().process(data["topic"], data.get("payload"))
    return jsonify(outcome.to_dict())


@app.route("/sensors", methods=["POST"])
def register_sensor():
    data = request.get_json(force=True, silent=True) or {}
    if "source_address" not in data:
        return jsonify({"error": "'source_address' required"}), 400
    try:
        address = int(data["source_address"])
    except (TypeError, ValueError):
        return jsonify({"error": "'source_address' must be an integer"}), 400

    info = get_pipeline().registry.register(
        address, data.get("sensor_id"), data.get("opening_type")
    )
    return jsonify({
        "sensor_id": info.sensor_id,
        "source_address": info.source_address,
        "opening_type": info.opening_type,
    }), 201


@app.route("/sensors/<sensor_id>/state", methods=["DELETE"])
def reset_sensor(sensor_id):
    get_pipeline().reset_sensor(sensor_id)
    return jsonify({"status": "reset", "sensor_id": sensor_id})


@app.route("/calibration/<sensor_id>", methods=["GET"])
def get_calibration(sensor_id):
    record = get_pipeline().calibrations.get(sensor_id)
    if record is None:
        return jsonify({"error": f"No calibration for sensor {sensor_id}"}), 404
    return jsonify(record.to_dict())


@app.route("/calibration/<sensor_id>", methods=["PUT"])
def put_calibration(sensor_id):
    """
    Set a sensor's calibration.

    Accepts either an explicit reference:
        { "closed_reference": [x, y, z], "tolerance": 2.0 }
    or a series of resting positions to calibrate from:
        { "positions": [[x, y, z], ...], "tolerance": 2.0 }
    Positions are device units. Optional: calibrated_by, opening_type.
    """
    data = request.get_json(force=True, silent=True) or {}
    pipeline = get_pipeline()
    tolerance = data.get("tolerance")

    try:
        if "positions" in data:
            record = pipeline.calibrations.calibrate_from_positions(
                sensor_id,
                data["positions"],
                tolerance=tolerance,
                calibrated_by=data.get("calibrated_by"),
                opening_type=data.get("opening_type"),
            )
        elif "closed_reference" in data:
            reference = tuple(float(v) for v in data["closed_reference"])
            if len(reference) != 3:
                raise CalibrationError("closed_reference must have 3 values")
            record = CalibrationRecord(
                closed_reference=reference,
                tolerance=float(tolerance) if tolerance is not None
                else config.DEFAULT_TOLERANCE,
                calibrated_by=data.get("calibrated_by"),
                opening_type=data.get("opening_type") or config.DEFAULT_OPENING_TYPE,
            )
            pipeline.set_calibration(sensor_id, record)
        else:
            return jsonify({"error": "'closed_reference' or 'positions' required"}), 400
    except CalibrationError as e:
        logger.warning(f"Calibration rejected for sensor {sensor_id}: {e}")
        return jsonify({"status": "rejected", "message": str(e)}), 422
    except (TypeError, ValueError) as e:
        return jsonify({"status": "rejected", "message": f"Invalid positions: {e}"}), 400

    return jsonify({"status": "calibrated", "calibration": record.to_dict()})


@app.route("/metrics", methods=["GET"])
def global_metrics():
    return jsonify(get_pipeline().metrics.get_global_metrics().to_dict())


@app.route("/metrics/<sensor_id>", methods=["GET"])
def sensor_metrics(sensor_id):
    metrics = get_pipeline().metrics
    return jsonify({
        "sensor_id": sensor_id,
        "metrics": metrics.get_metrics(sensor_id).to_dict(),
        "accuracy": metrics.estimate_accuracy(sensor_id),
    })


@app.route("/stats", methods=["GET"])
def stats():
    return jsonify(get_pipeline().get_status())


if __name__ == "__main__":
    port = config.SERVICE_PORT
    logger.info(f"Starting door detection service on port {port}")
    app.run(host="0.0.0.0", port=port, debug=False)
