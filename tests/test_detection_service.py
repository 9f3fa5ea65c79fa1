"""Tests for the Flask detection service."""

import pytest

from backend.door_detection.detection_service import app

FRONT_DOOR_ADDRESS = 422801533
TOPIC = f"pws-packet/gw-01/{FRONT_DOOR_ADDRESS}/127"


@pytest.fixture
def client():
    app.config["TESTING"] = True
    with app.test_client() as client:
        yield client


@pytest.fixture
def registered(client):
    response = client.post("/sensors", json={"source_address": FRONT_DOOR_ADDRESS,
                                             "sensor_id": "front-door"})
    assert response.status_code == 201
    return client


def _movement(x, y, z) -> dict:
    return {"topic": TOPIC, "payload": {"data": {"x_axis": x, "y_axis": y, "z_axis": z}}}


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "OK"


def test_register_sensor_validates_address(client) -> None:
    assert client.post("/sensors", json={}).status_code == 400
    assert client.post("/sensors", json={"source_address": "abc"}).status_code == 400


def test_process_requires_topic(client) -> None:
    assert client.post("/process", json={"payload": {}}).status_code == 400


def test_process_movement(registered) -> None:
    response = registered.post("/process", json=_movement(0, 0, 64))
    body = response.get_json()

    assert response.status_code == 200
    assert body["status"] == "processed"
    assert body["result"]["sensor_id"] == "front-door"
    assert body["result"]["door_state"]["door_state"] == "closed"
    assert body["result"]["door_state"]["certainty"] == "CERTAIN"


def test_process_unregistered_sensor_is_dropped(client) -> None:
    body = client.post("/process", json=_movement(0, 0, 64)).get_json()

    assert body["status"] == "dropped"
    assert body["error_kind"] == "unknown_sensor_identity"


def test_calibrate_from_positions_then_read_back(registered) -> None:
    response = registered.put("/calibration/front-door", json={
        "positions": [[0, 0, 63], [0, 0, 64], [0, 0, 65]],
        "calibrated_by": "installer",
    })

    assert response.status_code == 200
    assert response.get_json()["status"] == "calibrated"

    record = registered.get("/calibration/front-door").get_json()
    assert record["door_position"]["closed_reference"] == [0.0, 0.0, 64.0]
    assert record["door_position"]["calibrated_by"] == "installer"


def test_unstable_calibration_is_rejected(registered) -> None:
    response = registered.put("/calibration/front-door", json={
        "positions": [[0, 0, 50], [0, 0, 64], [0, 0, 78]],
    })

    assert response.status_code == 422
    assert response.get_json()["status"] == "rejected"
    assert registered.get("/calibration/front-door").status_code == 404


def test_explicit_calibration_reference(registered) -> None:
    response = registered.put("/calibration/front-door", json={
        "closed_reference": [0, 0, 64], "tolerance": 3, "opening_type": "window",
    })

    assert response.status_code == 200
    body = registered.post("/process", json=_movement(0, 0, 66)).get_json()
    assert body["result"]["door_state"]["door_state"] == "closed"
    assert body["result"]["door_state"]["opening_type"] == "window"


def test_calibration_body_required(registered) -> None:
    assert registered.put("/calibration/front-door", json={}).status_code == 400
    assert registered.put("/calibration/front-door",
                          json={"closed_reference": [0, 64]}).status_code == 422


def test_metrics_and_stats(registered) -> None:
    for _ in range(12):
        registered.post("/process", json=_movement(0, 0, 64))
    registered.post("/process", json={"topic": TOPIC, "payload": "not json"})

    global_metrics = registered.get("/metrics").get_json()
    sensor = registered.get("/metrics/front-door").get_json()
    stats = registered.get("/stats").get_json()

    assert global_metrics["total_detections"] == 12
    assert sensor["metrics"]["state_counts"]["closed"] == 12
    assert sensor["accuracy"]["samples"] == 12
    assert sensor["accuracy"]["accuracy"] > 0
    assert stats["drop_counts"] == {"malformed_payload": 1}


def test_reset_sensor_state(registered) -> None:
    registered.post("/process", json=_movement(0, 0, 64))

    response = registered.delete("/sensors/front-door/state")

    assert response.status_code == 200
    assert registered.get("/metrics/front-door").get_json()["metrics"]["total_detections"] == 0
