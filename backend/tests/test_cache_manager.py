"""Tests for the in-process LLM response cache."""

from cache_manager import ResponseCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_set_and_get():
    cache = ResponseCache(ttl=60)

    assert cache.set("k", {"symbol": "AAPL"})
    assert cache.get("k") == {"symbol": "AAPL"}
    assert cache.get("missing") is None


def test_entries_expire():
    clock = FakeClock()
    cache = ResponseCache(ttl=60, clock=clock)
    cache.set("k", "value")

    clock.now += 59
    assert cache.get("k") == "value"

    clock.now += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_per_entry_ttl():
    clock = FakeClock()
    cache = ResponseCache(ttl=60, clock=clock)
    cache.set("short", "value", ttl=5)

    clock.now += 10

    assert cache.get("short") is None


def test_full_cache_evicts_soonest_expiry():
    clock = FakeClock()
    cache = ResponseCache(ttl=60, max_entries=2, clock=clock)
    cache.set("a", 1)
    clock.now += 1
    cache.set("b", 2)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_make_key_is_stable():
    assert ResponseCache.make_key("email", "model", "prompt") == ResponseCache.make_key("email", "model", "prompt")
    assert ResponseCache.make_key("email", "model", "a") != ResponseCache.make_key("email", "model", "b")


def test_delete_and_clear():
    cache = ResponseCache()
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.delete("a")
    assert not cache.delete("a")
    cache.clear()
    assert len(cache) == 0
