"""In-process SERP signal cache with optional TTL and size bounds."""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from .models import SerpSignals

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str, str]


def make_key(query: str, city: str, state: str | None) -> CacheKey:
    return (query.lower().strip(), city.lower().strip(), (state or "").lower().strip())


@dataclass
class _Entry:
    signals: SerpSignals
    stored_at: float


class SignalCache:
    """
    Write-once-per-key store of fetched SERP signals.

    A live entry is never replaced; it only leaves the cache by expiring
    (ttl_seconds), by being evicted oldest-first when max_entries is reached,
    or by explicit invalidation. With both bounds left as None the cache grows
    for the lifetime of the process.
    """

    def __init__(
        self,
        ttl_seconds: float | None = None,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[CacheKey, _Entry] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        return self._live(key) is not None

    def _expired(self, entry: _Entry) -> bool:
        if self.ttl_seconds is None:
            return False
        return self._clock() - entry.stored_at >= self.ttl_seconds

    def _live(self, key: CacheKey) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[key]
            return None
        return entry

    def get(self, key: CacheKey) -> SerpSignals | None:
        entry = self._live(key)
        if entry is None:
            self.misses += 1
            return None
        self.hits += 1
        return entry.signals

    def put(self, key: CacheKey, signals: SerpSignals) -> bool:
        """Store signals for key. Returns False if a live entry already exists."""
        if self._live(key) is not None:
            return False
        if self.max_entries is not None:
            while len(self._entries) >= self.max_entries > 0:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted cached SERP signals for %s", evicted)
            if self.max_entries <= 0:
                return False
        self._entries[key] = _Entry(signals=signals, stored_at=self._clock())
        return True

    def invalidate_city(self, city: str) -> int:
        """Drop every entry for a city (force refresh). Returns how many went."""
        city = city.lower().strip()
        doomed = [key for key in self._entries if key[1] == city]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def purge_expired(self) -> int:
        doomed = [key for key, entry in self._entries.items() if self._expired(entry)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict:
        expired = sum(1 for entry in self._entries.values() if self._expired(entry))
        return {
            "entries": len(self._entries),
            "valid": len(self._entries) - expired,
            "expired": expired,
            "hits": self.hits,
            "misses": self.misses,
        }
