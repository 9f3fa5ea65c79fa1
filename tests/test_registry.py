"""Unit tests for the sensor registry boundary and shared helpers."""

import pytest

from backend.door_detection.errors import UnknownSensorIdentity
from backend.door_detection.registry import SensorRegistry
from backend.door_detection.utils import to_number


def test_lookup_registered_sensor() -> None:
    registry = SensorRegistry(auto_register=False)
    registry.register(42, "garage-door", opening_type="door")

    info = registry.lookup(42)

    assert info.sensor_id == "garage-door"
    assert info.source_address == 42
    assert info.opening_type == "door"


def test_unknown_address_raises_with_address() -> None:
    registry = SensorRegistry(auto_register=False)

    with pytest.raises(UnknownSensorIdentity) as excinfo:
        registry.lookup(77)

    assert excinfo.value.source_address == 77
    assert excinfo.value.kind == "unknown_sensor_identity"


def test_auto_register_uses_address_as_sensor_id() -> None:
    registry = SensorRegistry(auto_register=True)

    info = registry.lookup(77)

    assert info.sensor_id == "77"
    assert registry.sensors() == [info]


def test_auto_register_ignores_missing_address() -> None:
    with pytest.raises(UnknownSensorIdentity):
        SensorRegistry(auto_register=True).lookup(0)


def test_unregister() -> None:
    registry = SensorRegistry(auto_register=False)
    registry.register(42)

    assert registry.unregister(42) is True
    assert registry.unregister(42) is False


@pytest.mark.parametrize(
    "value, expected",
    [(3, 3.0), ("4.5", 4.5), (None, None), (True, None), ("abc", None), ([1], None),
     (float("nan"), None), ("NaN", None), (float("inf"), None), ("-Infinity", None)],
)
def test_to_number(value, expected) -> None:
    assert to_number(value) == expected
