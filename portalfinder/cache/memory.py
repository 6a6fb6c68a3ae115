"""Bounded process-local memory tier.

Holds a non-authoritative copy of recently used CacheEntry objects.
All operations are synchronous and never suspend the event loop.

Eviction:
    lru: reads promote the key, overflow evicts the least recently used
    fifo: reads never reorder, overflow evicts the earliest inserted
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Literal

from portalfinder.cache.models import CacheEntry, utcnow

logger = logging.getLogger(__name__)


class MemoryTier:
    """Fixed-capacity hot cache keyed by fingerprint."""

    def __init__(
        self,
        max_size: int = 100,
        eviction: Literal["lru", "fifo"] = "lru",
    ) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.max_size = max_size
        self.eviction = eviction
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> list[str]:
        """Keys in eviction order (next victim first)."""
        return list(self._entries.keys())

    def get(self, key: str, now: datetime | None = None) -> CacheEntry | None:
        """Return a live entry, lazily dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if entry.is_expired(now):
            del self._entries[key]
            logger.debug(f"Memory tier entry expired: {key[:8]}")
            return None

        if self.eviction == "lru":
            self._entries.move_to_end(key)
        return entry

    def put(self, key: str, entry: CacheEntry) -> None:
        """Insert or replace an entry, evicting one if at capacity.

        Replacing an existing key never evicts another entry.
        """
        if key in self._entries:
            self._entries[key] = entry
            if self.eviction == "lru":
                self._entries.move_to_end(key)
            return

        if len(self._entries) >= self.max_size:
            evicted_key, _ = self._entries.popitem(last=False)
            logger.debug(f"Memory tier evicted: {evicted_key[:8]}")

        self._entries[key] = entry

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def purge_expired(self, now: datetime | None = None) -> int:
        """Remove every expired entry regardless of access.

        Returns:
            Number of entries removed
        """
        now = now or utcnow()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.info(f"Purged {len(expired)} expired memory tier entries")
        return len(expired)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count
