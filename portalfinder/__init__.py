"""PortalFinder - two-tier query-result cache for government portal search.

Caches search results keyed by normalized query, state and city so repeated
searches skip the expensive result-generation call.

Basic usage:
    >>> from portalfinder.cache import CacheService, InMemoryCacheStore
    >>> cache = CacheService(InMemoryCacheStore())
    >>> await cache.start()
    >>> await cache.lookup("Passport Renewal", "Kerala", "Kochi")
"""

from dotenv import load_dotenv

load_dotenv()

__version__ = "0.1.0"

__all__ = ["__version__"]
