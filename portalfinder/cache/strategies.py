"""Ordered lookup strategies tried by CacheService.lookup().

Chain (first hit wins):
    MemoryLookup -> PersistentLookup -> SynonymLookup

Persistent and synonym hits are touched in the persistent tier; CacheService
promotes them into the memory tier under the caller's fingerprint.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

from portalfinder.cache.guard import PersistentTierGuard
from portalfinder.cache.keys import generate_cache_key
from portalfinder.cache.memory import MemoryTier
from portalfinder.cache.models import CacheEntry
from portalfinder.cache.stores import CacheStore
from portalfinder.cache.synonyms import SynonymResolver
from portalfinder.core.exceptions import CacheIOError

logger = logging.getLogger(__name__)

HitSource = Literal["memory", "persistent", "synonym"]


async def _record_hit(
    store: CacheStore, guard: PersistentTierGuard, fingerprint: str
) -> None:
    """Touch the matched row; a failed touch does not lose the hit."""
    try:
        await guard.call("touch", store.touch, fingerprint)
    except CacheIOError as e:
        logger.warning(f"Could not record hit for {fingerprint[:8]}: {e}")


@dataclass(frozen=True)
class LookupContext:
    """Inputs shared by every strategy for one lookup."""

    query: str
    state: str
    city: str
    normalized_query: str
    fingerprint: str


@dataclass(frozen=True)
class LookupHit:
    """A successful lookup.

    fingerprint is the key the entry was found under, which differs from the
    context's fingerprint for synonym hits.
    """

    entry: CacheEntry
    source: HitSource
    fingerprint: str
    resolved_query: str | None = None


class LookupStrategy(ABC):
    """One step of the lookup chain."""

    name: str = "base"

    @abstractmethod
    async def find(self, ctx: LookupContext) -> LookupHit | None:
        """Return a hit or None to let the next strategy try.

        May raise CacheIOError or CorruptEntryError; CacheService treats both
        as a miss.
        """
        pass


class MemoryLookup(LookupStrategy):
    name = "memory"

    def __init__(self, memory: MemoryTier):
        self.memory = memory

    async def find(self, ctx: LookupContext) -> LookupHit | None:
        entry = self.memory.get(ctx.fingerprint)
        if entry is None:
            return None
        return LookupHit(entry=entry, source="memory", fingerprint=ctx.fingerprint)


class PersistentLookup(LookupStrategy):
    name = "persistent"

    def __init__(self, store: CacheStore, guard: PersistentTierGuard):
        self.store = store
        self.guard = guard

    async def find(self, ctx: LookupContext) -> LookupHit | None:
        entry = await self.guard.call("get", self.store.get, ctx.fingerprint)
        if entry is None:
            return None
        await _record_hit(self.store, self.guard, ctx.fingerprint)
        return LookupHit(
            entry=entry.touched(), source="persistent", fingerprint=ctx.fingerprint
        )


class SynonymLookup(LookupStrategy):
    """Retry the persistent tier once with the synonym-resolved query."""

    name = "synonym"

    def __init__(
        self,
        store: CacheStore,
        resolver: SynonymResolver,
        guard: PersistentTierGuard,
    ):
        self.store = store
        self.resolver = resolver
        self.guard = guard

    async def find(self, ctx: LookupContext) -> LookupHit | None:
        resolved = await self.guard.call(
            "resolve_synonym", self.resolver.resolve, ctx.normalized_query
        )
        if resolved is None:
            return None

        synonym_key = generate_cache_key(resolved, ctx.state, ctx.city)
        if synonym_key == ctx.fingerprint:
            return None

        entry = await self.guard.call("get", self.store.get, synonym_key)
        if entry is None:
            return None

        await _record_hit(self.store, self.guard, synonym_key)
        return LookupHit(
            entry=entry.touched(),
            source="synonym",
            fingerprint=synonym_key,
            resolved_query=resolved,
        )
