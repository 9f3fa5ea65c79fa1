"""
registry.py — Sensor Registry Boundary
=======================================

Maps mesh source addresses to sensor ids. The real registry lives in the
hosting application's database; the core only needs a lookup, so this
module provides the in-memory implementation used by the service and the
tests. Unknown addresses raise UnknownSensorIdentity unless auto
registration is enabled.
"""

import logging
import threading
from dataclasses import dataclass

from . import config
from .errors import UnknownSensorIdentity

logger = logging.getLogger("door_detection.registry")


@dataclass(frozen=True)
class SensorInfo:
    sensor_id: str
    source_address: int
    opening_type: str = config.DEFAULT_OPENING_TYPE


class SensorRegistry:
    """
    Thread-safe in-memory address → sensor lookup.

    Registration is rare compared to lookups, so a single lock is enough
    here; lookups of known addresses are plain dict reads.
    """

    def __init__(self, auto_register: bool = None):
        """
        Args:
            auto_register: Register unknown addresses on first sight
                (sensor id = str(address)). Defaults to
                config.AUTO_REGISTER_SENSORS.
        """
        self.auto_register = (config.AUTO_REGISTER_SENSORS
                              if auto_register is None else auto_register)
        self._by_address: dict = {}
        self._lock = threading.Lock()

    def register(self, source_address: int, sensor_id: str = None,
                 opening_type: str = None) -> SensorInfo:
        info = SensorInfo(
            sensor_id=str(sensor_id if sensor_id is not None else source_address),
            source_address=int(source_address),
            opening_type=opening_type or config.DEFAULT_OPENING_TYPE,
        )
        with self._lock:
            self._by_address[info.source_address] = info
        logger.info(f"Sensor registered: address={source_address} id={info.sensor_id}")
        return info

    def unregister(self, source_address: int) -> bool:
        with self._lock:
            return self._by_address.pop(int(source_address), None) is not None

    def lookup(self, source_address: int) -> SensorInfo:
        """
        Resolve a source address.

        Raises:
            UnknownSensorIdentity: Address not registered and auto
                registration disabled.
        """
        info = self._by_address.get(source_address)
        if info is not None:
            return info
        if self.auto_register and source_address > 0:
            return self.register(source_address)
        raise UnknownSensorIdentity(
            f"Unknown sensor address {source_address}", source_address
        )

    def sensors(self) -> list:
        with self._lock:
            return list(self._by_address.values())
