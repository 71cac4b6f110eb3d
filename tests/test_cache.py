from llmgate.cache import MISSING, CacheStore


class TestCacheStore:

    def test_set_and_get(self, cache):
        cache.create("models", max_size=5, ttl=60)
        assert cache.set("models", "a", 1) == 1
        assert cache.get("models", "a") == 1
        assert cache.has("models", "a")

    def test_missing_key_and_unknown_cache(self, cache):
        cache.create("models")
        assert cache.get("models", "nope") is MISSING
        assert cache.get("unknown", "nope") is MISSING
        assert cache.get("unknown", "nope", default=None) is None
        assert not cache.has("unknown", "nope")
        assert cache.stats("unknown") is None

    def test_size_never_exceeds_max(self, clock):
        store = CacheStore(clock=clock)
        store.create("c", max_size=5, ttl=100)
        for i in range(50):
            clock.advance(0.01)
            store.set("c", i, i)
            assert store.size("c") <= 5

    def test_eviction_drops_oldest_batch(self, clock):
        store = CacheStore(clock=clock)
        store.create("c", max_size=10, ttl=100)
        for i in range(10):
            clock.advance(1)
            store.set("c", i, i)

        clock.advance(1)
        store.set("c", "new", "value")

        # floor(10 * 0.2) = 2 oldest entries are gone
        assert store.get("c", 0) is MISSING
        assert store.get("c", 1) is MISSING
        assert store.get("c", 2) == 2
        assert store.get("c", "new") == "value"
        assert store.size("c") == 9

    def test_eviction_with_small_cache_still_makes_room(self, clock):
        store = CacheStore(clock=clock)
        store.create("c", max_size=2, ttl=100)
        store.set("c", "a", 1)
        clock.advance(1)
        store.set("c", "b", 2)
        clock.advance(1)
        store.set("c", "c", 3)

        assert store.size("c") == 2
        assert store.get("c", "a") is MISSING
        assert store.get("c", "c") == 3

    def test_reads_do_not_refresh_insertion_order(self, clock):
        store = CacheStore(clock=clock)
        store.create("c", max_size=5, ttl=100)
        for i in range(5):
            clock.advance(1)
            store.set("c", i, i)
            # Keep reading the first entry; it must still be evicted first
            store.get("c", 0)

        clock.advance(1)
        store.set("c", "x", "x")
        assert store.get("c", 0) is MISSING

    def test_overwrite_does_not_evict(self, clock):
        store = CacheStore(clock=clock)
        store.create("c", max_size=3, ttl=100)
        for i in range(3):
            store.set("c", i, i)
        store.set("c", 1, "updated")

        assert store.size("c") == 3
        assert store.get("c", 0) == 0
        assert store.get("c", 1) == "updated"

    def test_ttl_expiry_is_a_miss(self, clock):
        store = CacheStore(clock=clock, cleanup_interval=10_000)
        store.create("c", ttl=60)
        store.set("c", "k", "v", ttl=10)

        clock.advance(10)
        assert store.get("c", "k") == "v"

        clock.advance(0.01)
        assert store.get("c", "k") is MISSING
        stats = store.stats("c")
        assert stats["misses"] == 1
        assert stats["hits"] == 1
        assert stats["size"] == 0

    def test_has_drops_expired_entry(self, clock):
        store = CacheStore(clock=clock, cleanup_interval=10_000)
        store.create("c", ttl=5)
        store.set("c", "k", "v")
        clock.advance(6)
        assert not store.has("c", "k")
        assert store.size("c") == 0

    def test_zero_default_ttl_never_expires(self, clock):
        store = CacheStore(default_ttl=0, clock=clock)
        store.create("c")
        store.set("c", "k", "v")
        clock.advance(1_000_000)
        assert store.get("c", "k") == "v"

    def test_periodic_sweep_removes_expired_entries(self, clock):
        store = CacheStore(clock=clock, cleanup_interval=120)
        store.create("c", ttl=10)
        store.set("c", "old", 1)
        store.set("c", "other", 2)

        clock.advance(121)
        # Any access past the interval triggers the sweep
        store.get("c", "unrelated")
        assert store.size("c") == 0

    def test_sweep_returns_removed_count(self, clock):
        store = CacheStore(clock=clock)
        store.create("c", ttl=10)
        store.set("c", "a", 1)
        store.set("c", "b", 2, ttl=100)
        clock.advance(11)
        assert store.sweep("c") == 1
        assert store.get("c", "b") == 2

    def test_delete_and_clear(self, cache):
        cache.create("c")
        cache.set("c", "a", 1)
        assert cache.delete("c", "a") is True
        assert cache.delete("c", "a") is False

        cache.set("c", "b", 2)
        cache.get("c", "b")
        cache.clear("c")
        stats = cache.stats("c")
        assert stats["size"] == 0
        assert stats["hits"] == 0

    def test_stats_hit_rate(self, cache):
        cache.create("c", max_size=7)
        cache.set("c", "a", 1)
        cache.get("c", "a")
        cache.get("c", "a")
        cache.get("c", "b")
        stats = cache.stats("c")
        assert stats["max_size"] == 7
        assert stats["hit_rate"] == 2 / 3
        assert set(cache.all_stats()) == {"c"}

    def test_ensure_keeps_existing_cache(self, cache):
        cache.create("c", max_size=3)
        cache.set("c", "a", 1)
        cache.ensure("c", max_size=50)
        assert cache.get("c", "a") == 1
        assert cache.stats("c")["max_size"] == 3
