"""
Process-wide cache for read-only CMS queries.

Entries carry a TTL and a set of invalidation tags. Expired entries are
recomputed synchronously on the next access; failures are never cached.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Protocol

import redis

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def cache_key(name: str, params: Optional[dict] = None) -> str:
    """Stable key for a query: identical name and params always collide."""
    return f"{name}:{json.dumps(params or {}, sort_keys=True, default=str)}"


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    ttl: float
    tags: frozenset[str] = field(default_factory=frozenset)

    def is_fresh(self, now: float) -> bool:
        return now - self.created_at < self.ttl

    def as_dict(self) -> dict:
        return {
            "value": self.value,
            "created_at": self.created_at,
            "ttl": self.ttl,
            "tags": sorted(self.tags),
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "CacheEntry":
        return cls(
            value=payload["value"],
            created_at=float(payload["created_at"]),
            ttl=float(payload["ttl"]),
            tags=frozenset(payload.get("tags") or ()),
        )


class CacheStore(Protocol):
    """Storage operations the query cache needs."""

    def get(self, key: str) -> Optional[CacheEntry]:
        ...

    def set(self, key: str, entry: CacheEntry) -> None:
        ...

    def invalidate_tag(self, tag: str) -> int:
        ...

    def clear(self) -> None:
        ...


class InMemoryCacheStore:
    """
    Dict-backed store with a reverse index from tag to keys.

    Every write first drops the entries that are already expired at the new
    entry's creation time, so the map only holds live keys plus the ones
    written since.
    """

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}
        self._tag_index: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        with self._lock:
            self._drop(key)
            self._sweep(entry.created_at)
            self._entries[key] = entry
            for tag in entry.tags:
                self._tag_index.setdefault(tag, set()).add(key)

    def invalidate_tag(self, tag: str) -> int:
        with self._lock:
            keys = self._tag_index.pop(tag, set())
            evicted = 0
            for key in keys:
                if key in self._entries:
                    self._drop(key)
                    evicted += 1
            return evicted

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tag_index.clear()

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            self._drop(key)
        if expired:
            logger.debug("Swept %d expired cache entries", len(expired))

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]


@dataclass
class RedisCacheStore:
    """
    Redis-backed store so several workers share one cache.

    Entries are JSON documents; each tag is a Redis set of entry keys.
    Freshness is still decided by the query cache's clock, the Redis
    expiry only bounds how long dead entries linger.
    """

    url: str
    prefix: str = "blog:cache"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _entry_key(self, key: str) -> str:
        return f"{self.prefix}:entry:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.prefix}:tag:{tag}"

    def get(self, key: str) -> Optional[CacheEntry]:
        raw = self.client.get(self._entry_key(key))
        if raw is None:
            return None
        return CacheEntry.from_dict(json.loads(raw))

    def set(self, key: str, entry: CacheEntry) -> None:
        entry_key = self._entry_key(key)
        pipe = self.client.pipeline()
        pipe.set(entry_key, json.dumps(entry.as_dict(), default=str))
        expiry = max(1, int(entry.ttl * 2))
        pipe.expire(entry_key, expiry)
        # A tag set outlives its longest-lived member: set once, then only extend.
        for tag in entry.tags:
            tag_key = self._tag_key(tag)
            pipe.sadd(tag_key, entry_key)
            pipe.expire(tag_key, expiry, nx=True)
            pipe.expire(tag_key, expiry, gt=True)
        pipe.execute()

    def invalidate_tag(self, tag: str) -> int:
        tag_key = self._tag_key(tag)
        members = self.client.smembers(tag_key)
        evicted = self.client.delete(*members) if members else 0
        self.client.delete(tag_key)
        return int(evicted)

    def clear(self) -> None:
        keys = list(self.client.scan_iter(match=f"{self.prefix}:*"))
        if keys:
            self.client.delete(*keys)


class QueryCache:
    """Serve cached query results while fresh, otherwise run the fetch."""

    def __init__(self, store: Optional[CacheStore] = None, clock: Clock = time.time):
        self.store = store if store is not None else InMemoryCacheStore()
        self.clock = clock

    def get_or_fetch(
        self,
        name: str,
        params: Optional[dict],
        fetch: Callable[[], Any],
        *,
        ttl: float,
        tags: Iterable[str] = (),
    ) -> Any:
        key = cache_key(name, params)
        entry = self.store.get(key)
        now = self.clock()
        if entry is not None and entry.is_fresh(now):
            logger.debug("Cache hit for %s", key)
            return entry.value

        logger.debug("Cache %s for %s", "expired" if entry else "miss", key)
        # Exceptions propagate before anything is stored.
        value = fetch()
        self.store.set(
            key,
            CacheEntry(value=value, created_at=self.clock(), ttl=ttl, tags=frozenset(tags)),
        )
        return value

    def invalidate_tag(self, tag: str) -> int:
        evicted = self.store.invalidate_tag(tag)
        logger.info("Invalidated cache tag %s (%d entries)", tag, evicted)
        return evicted

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        return sum(self.invalidate_tag(tag) for tag in tags)

    def clear(self) -> None:
        self.store.clear()
