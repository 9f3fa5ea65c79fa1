"""Unit tests for the sharded per-sensor TTL store."""

import threading

from backend.door_detection.store import ShardedTTLStore


class _FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_put_get_and_delete() -> None:
    store = ShardedTTLStore(shard_count=4)
    store.put("a", 1)

    assert store.get("a") == 1
    assert store.get("missing", "fallback") == "fallback"
    assert store.delete("a") is True
    assert store.delete("a") is False
    assert store.get("a") is None


def test_entries_expire_lazily_after_ttl() -> None:
    clock = _FakeClock()
    store = ShardedTTLStore(clock=clock)
    store.put("kalman_states:s1", "state", ttl=10)
    store.put("calibration:s1", "record")

    clock.now += 9
    assert store.get("kalman_states:s1") == "state"

    clock.now += 1
    assert store.get("kalman_states:s1") is None
    assert store.get("calibration:s1") == "record"
    assert store.keys("kalman_states:") == []


def test_update_passes_default_for_missing_or_expired_key() -> None:
    clock = _FakeClock()
    store = ShardedTTLStore(clock=clock)

    assert store.update("counter", lambda v: v + 1, ttl=5, default=0) == 1
    assert store.update("counter", lambda v: v + 1, ttl=5, default=0) == 2

    clock.now += 5
    assert store.update("counter", lambda v: v + 1, ttl=5, default=0) == 1


def test_update_is_atomic_per_key() -> None:
    store = ShardedTTLStore(shard_count=2)

    def _increment() -> None:
        for _ in range(1000):
            store.update("shared", lambda v: v + 1, default=0)

    threads = [threading.Thread(target=_increment) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("shared") == 8000


def test_keys_filters_by_prefix_and_len_counts_live_entries() -> None:
    store = ShardedTTLStore()
    store.put("calibration:a", 1)
    store.put("calibration:b", 2)
    store.put("door_state:a", "closed")

    assert sorted(store.keys("calibration:")) == ["calibration:a", "calibration:b"]
    assert len(store) == 3

    store.clear()
    assert len(store) == 0


def test_read_applies_function_to_current_value() -> None:
    store = ShardedTTLStore()
    store.put("items", [1, 2, 3])

    assert store.read("items", len) == 3
    assert store.read("absent", lambda v: v, default="none") == "none"


def test_writes_periodically_sweep_expired_entries_of_other_keys() -> None:
    clock = _FakeClock()
    store = ShardedTTLStore(shard_count=1, clock=clock, sweep_interval=3)
    store.put("kalman_states:gone", "state", ttl=10)
    store.update("last_position:gone", lambda v: (0, 0, 64), ttl=10)

    clock.now += 10
    entries = store._shards[0].entries
    assert set(entries) == {"kalman_states:gone", "last_position:gone"}

    store.put("kalman_states:active", "state", ttl=10)

    assert set(entries) == {"kalman_states:active"}


def test_purge_expired_sweeps_every_shard() -> None:
    clock = _FakeClock()
    store = ShardedTTLStore(shard_count=4, clock=clock)
    for i in range(10):
        store.put(f"kalman_states:{i}", i, ttl=5)
    store.put("calibration:a", "record")

    assert store.purge_expired() == 0

    clock.now += 5
    assert store.purge_expired() == 10
    assert sum(len(shard.entries) for shard in store._shards) == 1
    assert store.get("calibration:a") == "record"
