"""End-to-end tests for the telemetry-to-door-state pipeline."""

import pytest

from backend.door_detection.calibration import CalibrationRecord
from backend.door_detection.door_state import CLOSED, OPENED
from backend.door_detection.pipeline import get_pipeline, process_incoming_telemetry

FRONT_DOOR_ADDRESS = 422801533
BACK_WINDOW_ADDRESS = 422801534
CLOSED_POSITION = (0, 0, 64)
OPEN_POSITION = (64, 0, 0)


def test_movement_message_produces_state_and_notification(pipeline, movement_topic,
                                                          movement_payload) -> None:
    received = []
    pipeline.add_listener(received.append)

    outcome = pipeline.process(movement_topic(), movement_payload(*CLOSED_POSITION))

    assert outcome.ok
    assert outcome.result.door_state.state == CLOSED
    assert [n.new_state for n in received] == [CLOSED]
    assert list(pipeline.recent_notifications) == received


def test_failing_listener_does_not_block_others(pipeline, movement_topic,
                                                movement_payload) -> None:
    received = []

    def _broken(notification):
        raise RuntimeError("listener down")

    pipeline.add_listener(_broken)
    pipeline.add_listener(received.append)

    outcome = pipeline.process(movement_topic(), movement_payload(*CLOSED_POSITION))

    assert outcome.ok
    assert len(received) == 1


def test_unknown_sensor_identity_is_dropped(pipeline, movement_topic, movement_payload) -> None:
    outcome = pipeline.process(movement_topic(address=5), movement_payload(*CLOSED_POSITION))

    assert outcome.status == "dropped"
    assert outcome.error_kind == "unknown_sensor_identity"
    assert pipeline.router.drop_counts == {"unknown_sensor_identity": 1}


def test_missing_movement_data_leaves_no_filter_state(pipeline, movement_topic) -> None:
    outcome = pipeline.process(movement_topic(), {"data": {"x_axis": 3}})

    assert outcome.error_kind == "missing_movement_data"
    assert pipeline.store.keys("kalman_states:") == []


def test_non_finite_axes_do_not_poison_later_readings(pipeline, movement_topic,
                                                     movement_payload) -> None:
    tilted = (0, 45, 45)
    bad_payloads = [
        b'{"data": {"x_axis": NaN, "y_axis": 0, "z_axis": 64}}',
        b'{"data": {"x_axis": 0, "y_axis": Infinity, "z_axis": 64}}',
        b'{"data": {"x_axis": 0, "y_axis": 0, "z_axis": -Infinity}}',
    ]

    for bad in bad_payloads:
        pipeline.process(movement_topic(), movement_payload(*tilted))
        outcome = pipeline.process(movement_topic(), bad)
        assert outcome.status == "dropped"
        assert outcome.error_kind == "missing_movement_data"

    outcome = pipeline.process(movement_topic(), movement_payload(*tilted))

    state = outcome.result.door_state
    assert state.state == OPENED
    assert state.angle == pytest.approx(45.0, abs=0.5)
    assert pipeline.router.drop_counts == {"missing_movement_data": 3}


def test_calibrated_sensor_uses_calibrated_path(pipeline, movement_topic,
                                                movement_payload) -> None:
    pipeline.set_calibration("front-door", CalibrationRecord(closed_reference=(0, 0, 64)))

    outcome = pipeline.process(movement_topic(), movement_payload(0, 0, 65))

    assert outcome.result.door_state.state == CLOSED
    assert outcome.result.door_state.confidence == 95.0


def test_thousand_messages_per_sensor_with_malformed_traffic(pipeline, movement_topic,
                                                             movement_payload) -> None:
    notifications = []
    pipeline.add_listener(notifications.append)
    states = {"front-door": [], "back-window": []}
    processing_times = []
    malformed = 0

    for i in range(1000):
        position = OPEN_POSITION if (i // 100) % 2 else CLOSED_POSITION
        for address in (FRONT_DOOR_ADDRESS, BACK_WINDOW_ADDRESS):
            outcome = pipeline.process(movement_topic(address), movement_payload(*position))
            assert outcome.ok
            states[outcome.result.sensor_id].append(outcome.result.door_state.state)
            processing_times.append(outcome.processing_time_ms)
        if i % 10 == 0:
            dropped = pipeline.process(movement_topic(), b'{"data": {"x_axis": ')
            assert dropped.status == "dropped"
            malformed += 1

    assert sum(processing_times) / len(processing_times) < 25.0
    assert pipeline.router.drop_counts == {"malformed_payload": malformed}

    for sensor_id, sequence in states.items():
        transitions = [
            (previous, current)
            for previous, current in zip([None] + sequence, sequence)
            if previous != current
        ]
        sent = [(n.previous_state, n.new_state) for n in notifications
                if n.sensor_id == sensor_id]
        assert sent == transitions
        assert OPENED in sequence and CLOSED in sequence

    metrics = pipeline.metrics.get_global_metrics()
    assert metrics.total_detections == 2000
    assert metrics.sensor_count == 2


def test_reset_sensor_clears_dynamic_state(pipeline, movement_topic, movement_payload) -> None:
    pipeline.process(movement_topic(), movement_payload(*CLOSED_POSITION))

    pipeline.reset_sensor("front-door")

    assert pipeline.tracker.current_state("front-door") is None
    assert pipeline.metrics.get_metrics("front-door").total_detections == 0


def test_status_reports_counts(pipeline, movement_topic, movement_payload) -> None:
    pipeline.process(movement_topic(), movement_payload(*CLOSED_POSITION))
    pipeline.process(movement_topic(), "not json")

    status = pipeline.get_status()

    assert status["registered_sensors"] == 2
    assert status["calibrated_sensors"] == 0
    assert status["drop_counts"] == {"malformed_payload": 1}
    assert status["processing_stats"]["movement"]["processed_count"] == 1
    assert status["global_metrics"]["total_detections"] == 1


def test_module_entry_point_never_raises(movement_topic, movement_payload) -> None:
    get_pipeline().registry.register(FRONT_DOOR_ADDRESS, "front-door")

    processed = process_incoming_telemetry(movement_topic(), movement_payload(*CLOSED_POSITION))
    garbage = process_incoming_telemetry(movement_topic(), b"\x00\x01")
    unknown = process_incoming_telemetry("pws-packet/gw-01/1/250", {"data": {}})

    assert processed["status"] == "processed"
    assert processed["result"]["door_state"]["door_state"] == CLOSED
    assert processed["result"]["state_changed"] is True
    assert garbage["error_kind"] == "malformed_payload"
    assert unknown["error_kind"] == "unknown_sensor_type"
