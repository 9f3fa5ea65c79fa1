"""
store.py — Sharded Per-Sensor State Store
==========================================

In-process key-value store holding every piece of per-sensor mutable state
(Kalman axis states, calibration records, cached door states, metrics).

Keys are spread over a fixed number of shards, each guarded by its own lock,
so two messages from different sensors almost never contend. Every
read-modify-write goes through update(), which holds the shard lock for the
whole get-and-put and is therefore atomic per key.

Entries may carry a TTL. Expired entries are evicted lazily on access, and
each shard is swept in full every STORE_SWEEP_INTERVAL writes so keys of
sensors that stopped reporting do not accumulate.
"""

import logging
import threading
import time
from typing import Any, Callable, Optional

from . import config

logger = logging.getLogger("door_detection.store")

_MISSING = object()


class _Shard:
    """One lock plus the entries that hash to it."""

    __slots__ = ("lock", "entries", "writes")

    def __init__(self):
        self.lock = threading.Lock()
        # key -> (value, expires_at | None)
        self.entries: dict = {}
        self.writes = 0


class ShardedTTLStore:
    """
    Concurrent key-value store with per-shard locking and optional TTL.

    Attributes:
        shard_count (int): Number of independently locked shards.
    """

    def __init__(self, shard_count: int = None, clock: Callable[[], float] = None,
                 sweep_interval: int = None):
        """
        Args:
            shard_count: Number of shards. Defaults to config.STORE_SHARD_COUNT.
            clock: Monotonic time source in seconds (injectable for tests).
            sweep_interval: Writes per shard between sweeps of expired
                entries. Defaults to config.STORE_SWEEP_INTERVAL.
        """
        self.shard_count = shard_count or config.STORE_SHARD_COUNT
        self.sweep_interval = sweep_interval or config.STORE_SWEEP_INTERVAL
        self._clock = clock or time.monotonic
        self._shards = [_Shard() for _ in range(self.shard_count)]

    def _shard(self, key: str) -> _Shard:
        return self._shards[hash(key) % self.shard_count]

    def _expiry(self, ttl: Optional[float]) -> Optional[float]:
        return None if ttl is None else self._clock() + ttl

    def _live_value(self, shard: _Shard, key: str) -> Any:
        """Return the stored value or _MISSING. Caller holds the shard lock."""
        entry = shard.entries.get(key)
        if entry is None:
            return _MISSING
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del shard.entries[key]
            logger.debug(f"Evicted expired key {key}")
            return _MISSING
        return value

    def _sweep(self, shard: _Shard) -> int:
        """Drop every expired entry of a shard. Caller holds the shard lock."""
        now = self._clock()
        expired = [key for key, (_, expires_at) in shard.entries.items()
                   if expires_at is not None and expires_at <= now]
        for key in expired:
            del shard.entries[key]
        return len(expired)

    def _record_write(self, shard: _Shard) -> None:
        shard.writes += 1
        if shard.writes % self.sweep_interval == 0:
            removed = self._sweep(shard)
            if removed:
                logger.debug(f"Swept {removed} expired keys")

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value, or default when absent or expired."""
        shard = self._shard(key)
        with shard.lock:
            value = self._live_value(shard, key)
        return default if value is _MISSING else value

    def read(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Apply fn to the current value (or default) under the shard lock."""
        shard = self._shard(key)
        with shard.lock:
            value = self._live_value(shard, key)
            return fn(default if value is _MISSING else value)

    def put(self, key: str, value: Any, ttl: float = None) -> None:
        """Store a value, replacing any previous one. ttl in seconds."""
        shard = self._shard(key)
        with shard.lock:
            shard.entries[key] = (value, self._expiry(ttl))
            self._record_write(shard)

    def update(self, key: str, fn: Callable[[Any], Any],
               ttl: float = None, default: Any = None) -> Any:
        """
        Atomically replace the value of key with fn(current).

        The shard lock is held for the whole read-modify-write, so
        concurrent updates of the same key are serialized while updates
        of keys in other shards proceed in parallel.

        Args:
            key: Store key.
            fn: Function receiving the current value (or default) and
                returning the new value.
            ttl: TTL for the new value in seconds (None = no expiry).
            default: Value passed to fn when the key is absent or expired.

        Returns:
            The new value.
        """
        shard = self._shard(key)
        with shard.lock:
            current = self._live_value(shard, key)
            new_value = fn(default if current is _MISSING else current)
            shard.entries[key] = (new_value, self._expiry(ttl))
            self._record_write(shard)
        return new_value

    def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it was present."""
        shard = self._shard(key)
        with shard.lock:
            return shard.entries.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list:
        """List live keys starting with prefix (shards are visited one by one)."""
        found = []
        for shard in self._shards:
            with shard.lock:
                for key in list(shard.entries):
                    if key.startswith(prefix) and self._live_value(shard, key) is not _MISSING:
                        found.append(key)
        return found

    def purge_expired(self) -> int:
        """Sweep every shard now. Returns the number of entries removed."""
        removed = 0
        for shard in self._shards:
            with shard.lock:
                removed += self._sweep(shard)
        return removed

    def clear(self) -> None:
        """Drop every entry."""
        for shard in self._shards:
            with shard.lock:
                shard.entries.clear()

    def __len__(self) -> int:
        return len(self.keys())
