"""Shared fixtures: a fresh pipeline with registered sensors and payload builders."""

import json

import pytest

from backend.door_detection.pipeline import DetectionPipeline, reset_pipeline
from backend.door_detection.registry import SensorRegistry

FRONT_DOOR_ADDRESS = 422801533
BACK_WINDOW_ADDRESS = 422801534


@pytest.fixture(autouse=True)
def _fresh_singleton():
    reset_pipeline()
    yield
    reset_pipeline()


@pytest.fixture
def pipeline() -> DetectionPipeline:
    pipeline = DetectionPipeline(registry=SensorRegistry(auto_register=False))
    pipeline.registry.register(FRONT_DOOR_ADDRESS, "front-door")
    pipeline.registry.register(BACK_WINDOW_ADDRESS, "back-window", opening_type="window")
    return pipeline


@pytest.fixture
def movement_topic():
    def _topic(address: int = FRONT_DOOR_ADDRESS, gateway: str = "gw-01") -> str:
        return f"pws-packet/{gateway}/{address}/127"

    return _topic


@pytest.fixture
def movement_payload():
    def _payload(x, y, z, move_number=None) -> bytes:
        data = {"state": 1, "x_axis": x, "y_axis": y, "z_axis": z}
        if move_number is not None:
            data["move_number"] = move_number
        return json.dumps({"tx_time_ms_epoch": 1700000000000, "event_id": 7,
                           "data": data}).encode()

    return _payload
