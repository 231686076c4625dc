from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from app.services.profiles.types import ConsolidatedProfile

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    profile: ConsolidatedProfile
    stored_at: float


@dataclass(frozen=True)
class ProfileCacheStats:
    size: int
    max_size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class ProfileCache:
    """Bounded in-memory front cache for consolidated profiles.

    Entries are kept in insertion order; re-setting a key moves it to the end.
    When the cache grows past ``max_size`` the oldest-inserted entries are
    evicted first. Entries older than ``ttl_seconds`` are treated as misses.

    Construct one instance at service start and pass it to the store.
    """

    def __init__(
        self,
        max_size: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        auto_enforce: bool = True,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._auto_enforce = auto_enforce
        self._entries: OrderedDict[str, _CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def get(self, entity_key: str) -> ConsolidatedProfile | None:
        with self._lock:
            entry = self._entries.get(entity_key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() - entry.stored_at >= self.ttl_seconds:
                del self._entries[entity_key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.profile

    def set(self, profile: ConsolidatedProfile) -> None:
        with self._lock:
            self._entries.pop(profile.entity_key, None)
            self._entries[profile.entity_key] = _CacheEntry(profile=profile, stored_at=self._clock())
        if self._auto_enforce:
            self.enforce_bound()

    def evict(self, entity_key: str) -> bool:
        with self._lock:
            return self._entries.pop(entity_key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def enforce_bound(self) -> int:
        evicted = 0
        with self._lock:
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)
                evicted += 1
        if evicted:
            logger.debug("profile_cache_evicted", extra={"evicted": evicted, "max_size": self.max_size})
        return evicted

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, entity_key: object) -> bool:
        with self._lock:
            return entity_key in self._entries

    def stats(self) -> ProfileCacheStats:
        with self._lock:
            return ProfileCacheStats(
                size=len(self._entries),
                max_size=self.max_size,
                hits=self._hits,
                misses=self._misses,
            )
