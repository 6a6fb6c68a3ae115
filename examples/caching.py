"""Caching - skip repeated result generation for equivalent searches.

Demonstrates the two-tier cache with the in-process persistent tier:
exact repeats, reworded queries and synonym matches all reuse one result.
Set DATABASE_URL to run the same flow against PostgreSQL.
"""

import asyncio
import time

from portalfinder.cache import CacheService, InMemoryCacheStore
from portalfinder.core.config import load_cache_config, settings
from portalfinder.core.database import Database


async def generate_result(query: str, state: str, city: str) -> dict:
    """Stand-in for the expensive search call."""
    await asyncio.sleep(0.5)
    return {"services": [{"title": f"{query.title()} Service", "location": f"{city}, {state}"}]}


async def main():
    print("Cache Demo\n")

    database = None
    if settings.database_url:
        database = Database(settings.database_url)
        await database.connect()
        await database.apply_schema()
        store = database.cache_store()
        print("✅ PostgreSQL persistent tier\n")
    else:
        store = InMemoryCacheStore()
        print("⚠️  DATABASE_URL not set, using in-process persistent tier\n")

    cache = CacheService(store, load_cache_config())
    await cache.start()

    searches = [
        ("Driving License Renewal", "Kerala", "Kochi"),
        ("driving   license renewal", "KERALA", "kochi"),  # Same after normalization
        ("DL renewal", "Kerala", "Kochi"),  # Synonym of the first query
        ("ration card", "Kerala", "Kochi"),
    ]

    print("=" * 60)
    for i, (query, state, city) in enumerate(searches, 1):
        start = time.time()
        result = await cache.lookup(query, state, city)
        if result is None:
            result = await generate_result(query, state, city)
            await cache.store(query, state, city, result)
            outcome = "generated"
        else:
            outcome = "CACHE HIT"
        elapsed = (time.time() - start) * 1000
        print(f"Search {i}: {query!r:32} {elapsed:7.1f}ms  {outcome}")
    print("=" * 60)

    report = await cache.stats(days=1)
    print(f"\nHit rate: {report.summary.hit_rate}%")
    print(f"API calls saved: {report.summary.api_calls_saved}")

    counters = cache.get_stats()
    print(
        f"Hits by tier: memory={counters.memory_hits} "
        f"persistent={counters.persistent_hits} synonym={counters.synonym_hits}"
    )

    health = await cache.health()
    print(f"Health: {health.status}")

    await cache.stop()
    if database is not None:
        await database.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
