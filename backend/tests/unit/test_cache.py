"""Unit tests for the TTL read cache."""
import threading

from pmta_insights.services.cache import PIPELINE_INVALIDATED_KEYS, TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestTTLCache:
    """Tests for TTLCache."""

    def test_get_returns_stored_value(self):
        """Values are returned until they expire."""
        cache = TTLCache(default_ttl=60, clock=FakeClock())
        cache.set("insights:overview", {"total": 3})
        assert cache.get("insights:overview") == {"total": 3}

    def test_missing_key(self):
        """Unknown keys return None."""
        assert TTLCache().get("nope") is None

    def test_entries_expire(self):
        """An entry past its TTL is dropped."""
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("stats", 1)
        clock.now += 59
        assert cache.get("stats") == 1
        clock.now += 2
        assert cache.get("stats") is None
        assert len(cache) == 0

    def test_per_entry_ttl(self):
        """An explicit ttl overrides the default."""
        clock = FakeClock()
        cache = TTLCache(default_ttl=60, clock=clock)
        cache.set("short", 1, ttl=5)
        clock.now += 6
        assert cache.get("short") is None

    def test_invalidate_by_pattern(self):
        """Invalidation removes every key containing the pattern."""
        cache = TTLCache()
        cache.set("insights:overview", 1)
        cache.set("insights:domains", 2)
        cache.set("stats:daily", 3)
        assert cache.invalidate("insights") == 2
        assert cache.get("insights:overview") is None
        assert cache.get("stats:daily") == 3

    def test_clear(self):
        """Clear empties the cache."""
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert len(cache) == 0

    def test_pipeline_keys(self):
        """New data invalidates insights, incidents and stats."""
        assert set(PIPELINE_INVALIDATED_KEYS) == {"insights", "incidents", "stats"}

    def test_concurrent_writers(self):
        """Concurrent set calls from several threads all land."""
        cache = TTLCache()

        def writer(prefix):
            for i in range(100):
                cache.set(f"{prefix}:{i}", i)

        threads = [threading.Thread(target=writer, args=(f"t{n}",)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(cache) == 400
