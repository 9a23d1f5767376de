import json
import unittest
from unittest.mock import patch

from blog_backend.cache import (
    CacheEntry,
    InMemoryCacheStore,
    QueryCache,
    RedisCacheStore,
    cache_key,
)
from blog_backend.errors import UpstreamError


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingFetch:
    def __init__(self, value=None):
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.value


class QueryCacheTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = QueryCache(InMemoryCacheStore(), clock=self.clock)

    def test_cache_key_is_order_independent(self):
        self.assertEqual(cache_key("posts", {"b": 1, "a": 2}), cache_key("posts", {"a": 2, "b": 1}))
        self.assertNotEqual(cache_key("posts", {"a": 1}), cache_key("posts", {"a": 2}))
        self.assertEqual(cache_key("categories"), cache_key("categories", {}))

    def test_fetches_once_within_ttl_and_again_after_expiry(self):
        fetch = CountingFetch(["a", "b"])
        for _ in range(3):
            self.assertEqual(self.cache.get_or_fetch("categories", None, fetch, ttl=300), ["a", "b"])
        self.assertEqual(fetch.calls, 1)

        self.clock.advance(299)
        self.cache.get_or_fetch("categories", None, fetch, ttl=300)
        self.assertEqual(fetch.calls, 1)

        self.clock.advance(1)
        self.cache.get_or_fetch("categories", None, fetch, ttl=300)
        self.assertEqual(fetch.calls, 2)

    def test_none_results_are_cached(self):
        fetch = CountingFetch(None)
        self.assertIsNone(self.cache.get_or_fetch("category", {"slug": "x"}, fetch, ttl=300))
        self.assertIsNone(self.cache.get_or_fetch("category", {"slug": "x"}, fetch, ttl=300))
        self.assertEqual(fetch.calls, 1)

    def test_failures_are_not_cached(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise UpstreamError("cms down")
            return ["ok"]

        with self.assertRaises(UpstreamError):
            self.cache.get_or_fetch("tags", None, flaky, ttl=300)
        self.assertEqual(self.cache.get_or_fetch("tags", None, flaky, ttl=300), ["ok"])
        self.assertEqual(len(attempts), 2)

    def test_invalidate_tag_evicts_across_descriptors(self):
        all_fetch = CountingFetch(["foo", "bar"])
        foo_fetch = CountingFetch({"slug": "foo"})
        bar_fetch = CountingFetch({"slug": "bar"})
        self.cache.get_or_fetch("categories", None, all_fetch, ttl=300, tags=["categories"])
        self.cache.get_or_fetch(
            "category", {"slug": "foo"}, foo_fetch, ttl=300, tags=["categories", "category-foo"]
        )
        self.cache.get_or_fetch(
            "category", {"slug": "bar"}, bar_fetch, ttl=300, tags=["categories", "category-bar"]
        )

        self.assertEqual(self.cache.invalidate_tag("category-foo"), 1)
        self.cache.get_or_fetch(
            "category", {"slug": "foo"}, foo_fetch, ttl=300, tags=["categories", "category-foo"]
        )
        self.cache.get_or_fetch(
            "category", {"slug": "bar"}, bar_fetch, ttl=300, tags=["categories", "category-bar"]
        )
        self.assertEqual(foo_fetch.calls, 2)
        self.assertEqual(bar_fetch.calls, 1)

        self.assertEqual(self.cache.invalidate_tag("categories"), 3)
        self.assertEqual(self.cache.invalidate_tag("categories"), 0)

    def test_clear(self):
        fetch = CountingFetch([])
        self.cache.get_or_fetch("tags", None, fetch, ttl=300)
        self.cache.clear()
        self.cache.get_or_fetch("tags", None, fetch, ttl=300)
        self.assertEqual(fetch.calls, 2)


class InMemoryCacheStoreTests(unittest.TestCase):
    def test_overwrite_reindexes_tags(self):
        store = InMemoryCacheStore()
        store.set("k", CacheEntry(value=1, created_at=0, ttl=10, tags=frozenset({"old"})))
        store.set("k", CacheEntry(value=2, created_at=0, ttl=10, tags=frozenset({"new"})))
        self.assertEqual(store.invalidate_tag("old"), 0)
        self.assertEqual(store.get("k").value, 2)
        self.assertEqual(store.invalidate_tag("new"), 1)
        self.assertIsNone(store.get("k"))
        self.assertEqual(len(store), 0)

    def test_write_sweeps_expired_entries(self):
        store = InMemoryCacheStore()
        clock = FakeClock()
        cache = QueryCache(store, clock=clock)
        for i in range(1000):
            cache.get_or_fetch(
                "category",
                {"slug": f"junk-{i}"},
                CountingFetch(None),
                ttl=300,
                tags=[f"category-junk-{i}"],
            )
        self.assertEqual(len(store), 1000)

        clock.advance(300)
        cache.get_or_fetch("category", {"slug": "fresh"}, CountingFetch(None), ttl=300, tags=["categories"])
        self.assertEqual(len(store), 1)
        self.assertEqual(store.invalidate_tag("category-junk-0"), 0)

    def test_sweep_keeps_live_entries(self):
        store = InMemoryCacheStore()
        store.set("old", CacheEntry(value=1, created_at=0, ttl=10))
        store.set("long", CacheEntry(value=2, created_at=0, ttl=100))
        store.set("new", CacheEntry(value=3, created_at=50, ttl=10))
        self.assertIsNone(store.get("old"))
        self.assertEqual(store.get("long").value, 2)
        self.assertEqual(len(store), 2)


class FakeRedis:
    """Just enough of the redis-py surface for RedisCacheStore."""

    def __init__(self):
        self.values = {}
        self.sets = {}
        self.expiries = {}

    def pipeline(self):
        return self

    def execute(self):
        return []

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value):
        self.values[key] = value.encode("utf-8")
        return True

    def expire(self, key, seconds, nx=False, gt=False):
        current = self.expiries.get(key)
        if nx and current is not None:
            return False
        if gt and (current is None or seconds <= current):
            return False
        self.expiries[key] = seconds
        return True

    def sadd(self, key, member):
        self.sets.setdefault(key, set()).add(member)
        return 1

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            if self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    def scan_iter(self, match=None):
        prefix = (match or "*").rstrip("*")
        return [k for k in list(self.values) + list(self.sets) if k.startswith(prefix)]


class RedisCacheStoreTests(unittest.TestCase):
    def setUp(self):
        self.fake = FakeRedis()
        with patch("blog_backend.cache.redis.Redis.from_url", return_value=self.fake):
            self.store = RedisCacheStore(url="redis://localhost:6379/0", prefix="test")

    def test_roundtrip_and_tag_invalidation(self):
        entry = CacheEntry(value={"slug": "foo"}, created_at=5.0, ttl=300, tags=frozenset({"t"}))
        self.store.set("category:foo", entry)

        loaded = self.store.get("category:foo")
        self.assertEqual(loaded.value, {"slug": "foo"})
        self.assertEqual(loaded.created_at, 5.0)
        self.assertEqual(loaded.tags, frozenset({"t"}))
        self.assertEqual(self.fake.expiries["test:entry:category:foo"], 600)
        stored = json.loads(self.fake.values["test:entry:category:foo"])
        self.assertEqual(stored["tags"], ["t"])

        self.assertEqual(self.store.invalidate_tag("t"), 1)
        self.assertIsNone(self.store.get("category:foo"))

    def test_tag_sets_expire_with_their_longest_member(self):
        self.store.set("tag:a", CacheEntry(value=1, created_at=0, ttl=300, tags=frozenset({"tags"})))
        self.assertEqual(self.fake.expiries["test:tag:tags"], 600)

        self.store.set("tag:b", CacheEntry(value=2, created_at=0, ttl=60, tags=frozenset({"tags"})))
        self.assertEqual(self.fake.expiries["test:tag:tags"], 600)

        self.store.set("tag:c", CacheEntry(value=3, created_at=0, ttl=900, tags=frozenset({"tags"})))
        self.assertEqual(self.fake.expiries["test:tag:tags"], 1800)

    def test_query_cache_over_redis_caches_none(self):
        cache = QueryCache(self.store, clock=FakeClock())
        fetch = CountingFetch(None)
        cache.get_or_fetch("post", {"slug": "missing"}, fetch, ttl=60)
        cache.get_or_fetch("post", {"slug": "missing"}, fetch, ttl=60)
        self.assertEqual(fetch.calls, 1)


if __name__ == "__main__":
    unittest.main()
