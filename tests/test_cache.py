"""Tests for the bounded TTL response cache."""

import pytest

from kenny.integrations.cache import ResponseCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_get_and_put():
    cache = ResponseCache()
    cache.put("k", "v")
    assert cache.get("k") == "v"
    assert cache.hits == 1


def test_miss():
    cache = ResponseCache()
    assert cache.get("missing") is None
    assert cache.misses == 1


def test_entries_expire():
    clock = FakeClock()
    cache = ResponseCache(ttl=60, clock=clock)
    cache.put("k", "v")

    clock.now = 59
    assert cache.get("k") == "v"

    clock.now = 121
    assert cache.get("k") is None
    assert len(cache) == 0


def test_evicts_least_recently_used():
    cache = ResponseCache(max_entries=2)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")
    cache.put("c", 3)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


def test_clear():
    cache = ResponseCache()
    cache.put("a", 1)
    cache.clear()
    assert len(cache) == 0


def test_rejects_zero_capacity():
    with pytest.raises(ValueError):
        ResponseCache(max_entries=0)
