"""Unit tests for calibration records, drift adaptation and the calibration store."""

import pytest

from backend.door_detection.calibration import (
    CalibrationRecord,
    CalibrationStore,
    assess_position_stability,
)
from backend.door_detection.errors import CalibrationError
from backend.door_detection.normalizer import AccelerometerSample


def test_tolerance_and_distance_use_device_units() -> None:
    record = CalibrationRecord(closed_reference=(0, 0, 64), tolerance=2.0)
    sample = AccelerometerSample(0.0, 0.0, 66 / 64)

    assert record.is_within_tolerance(sample)
    assert record.calculate_max_difference(sample) == 2.0
    assert record.distance_to(sample) == pytest.approx(2.0)


def test_distance_is_euclidean_across_axes() -> None:
    record = CalibrationRecord(closed_reference=(0, 0, 64))
    sample = AccelerometerSample(3 / 64, 4 / 64, 1.0)

    assert record.distance_to(sample) == pytest.approx(5.0)
    assert record.calculate_max_difference(sample) == 4.0
    assert not record.is_within_tolerance(sample)


def test_dynamic_update_at_exact_max_change_is_applied() -> None:
    record = CalibrationRecord(closed_reference=(0.0, 0.0, 0.0))

    updated = record.update_dynamic_reference((5, 5, 5))

    assert updated is not record
    assert updated.closed_reference == (0.5, 0.5, 0.5)
    assert len(updated.history) == 1
    entry = updated.history[0]
    assert entry.old_reference == (0.0, 0.0, 0.0)
    assert entry.new_reference == (0.5, 0.5, 0.5)
    assert entry.max_change == pytest.approx(0.5)
    assert entry.type == "dynamic_update"


@pytest.mark.parametrize("old", [-2.16, -1.32, -1.11, 0.07, 1.25, 2.53, 31.87])
def test_dynamic_update_at_exact_max_change_from_fractional_reference(old) -> None:
    record = CalibrationRecord(closed_reference=(old, old, old))

    updated = record.update_dynamic_reference((old + 5, old + 5, old + 5))

    assert len(updated.history) == 1
    assert updated.closed_reference == pytest.approx((old + 0.5,) * 3)
    assert updated.history[0].max_change == 0.5


def test_dynamic_update_above_max_change_is_rejected() -> None:
    record = CalibrationRecord(closed_reference=(0.0, 0.0, 0.0))

    updated = record.update_dynamic_reference((5.1, 0, 0))

    assert updated is record
    assert record.history == ()


def test_dynamic_update_blends_and_rounds_reference() -> None:
    record = CalibrationRecord(closed_reference=(1.0, -2.0, 64.0))

    updated = record.update_dynamic_reference((2, -1, 63))

    assert updated.closed_reference == (1.1, -1.9, 63.9)


def test_dynamic_update_accepts_normalized_sample() -> None:
    record = CalibrationRecord(closed_reference=(0.0, 0.0, 64.0))

    updated = record.update_dynamic_reference(AccelerometerSample(0.0, 0.0, 66 / 64))

    assert updated.closed_reference == (0.0, 0.0, 64.2)


def test_dynamic_update_without_movement_keeps_record() -> None:
    record = CalibrationRecord(closed_reference=(0.0, 0.0, 64.0))

    assert record.update_dynamic_reference((0, 0, 64)) is record


def test_record_to_dict_includes_history() -> None:
    record = CalibrationRecord(closed_reference=(0.0, 0.0, 0.0), calibrated_by="installer")
    updated = record.update_dynamic_reference((1, 0, 0))

    data = updated.to_dict()

    assert data["door_position"]["closed_reference"] == [0.1, 0.0, 0.0]
    assert data["door_position"]["calibrated_by"] == "installer"
    assert data["history"][0]["type"] == "dynamic_update"


def test_position_stability_uses_population_variance() -> None:
    result = assess_position_stability([(0, 0, 63), (0, 0, 64), (0, 0, 65)])

    assert result["variance_z"] == pytest.approx(2 / 3)
    assert result["variance_x"] == 0.0
    assert result["stable"] is True
    assert result["overall_stability"] == pytest.approx(1 / 3)
    assert result["mean_position"] == pytest.approx((0.0, 0.0, 64.0))


def test_calibrate_from_stable_positions() -> None:
    store = CalibrationStore()

    record = store.calibrate_from_positions(
        "front-door", [(1, 0, 63), (1, 0, 64), (1, 0, 65)], calibrated_by="installer"
    )

    assert record.closed_reference == (1.0, 0.0, 64.0)
    assert record.tolerance == 2.0
    assert store.get("front-door") == record
    assert store.sensor_ids() == ["front-door"]


@pytest.mark.parametrize(
    "positions",
    [
        [(0, 0, 64), (0, 0, 64)],
        [(0, 0, 64), (0, 0, 200), (0, 0, 64)],
        [(0, 0, 60), (0, 0, 64), (0, 0, 68)],
    ],
    ids=["too-few", "out-of-range", "unstable"],
)
def test_calibrate_from_positions_rejects_bad_data(positions) -> None:
    store = CalibrationStore()

    with pytest.raises(CalibrationError):
        store.calibrate_from_positions("front-door", positions)

    assert store.get("front-door") is None


def test_store_dynamic_update_for_uncalibrated_sensor_returns_none() -> None:
    assert CalibrationStore().update_dynamic_reference("nobody", (0, 0, 64)) is None


def test_store_dynamic_update_swaps_record() -> None:
    store = CalibrationStore()
    store.set("front-door", CalibrationRecord(closed_reference=(0.0, 0.0, 64.0)))

    updated = store.update_dynamic_reference("front-door", (0, 0, 65))

    assert updated.closed_reference == (0.0, 0.0, 64.1)
    assert store.get("front-door").closed_reference == (0.0, 0.0, 64.1)


def test_remove_calibration() -> None:
    store = CalibrationStore()
    store.set("front-door", CalibrationRecord(closed_reference=(0.0, 0.0, 64.0)))

    assert store.remove("front-door") is True
    assert store.remove("front-door") is False
    assert store.get("front-door") is None
