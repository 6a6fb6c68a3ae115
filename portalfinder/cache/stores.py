"""Persistent tier storage backends.

The persistent tier owns the four cache tables: cached results, daily
lookup statistics, popular queries and query synonyms.

Storage Options:
- InMemoryCacheStore: Dict-based storage for testing/development
- PostgresCacheStore: PostgreSQL-based storage for production

Design Notes:
- upsert() is insert-or-replace keyed by fingerprint (last write wins)
- get() never returns a row whose expires_at has passed
- A payload that fails to deserialize raises CorruptEntryError
- PostgreSQL has no native TTL; CleanupScheduler calls delete_expired()

Usage:
    >>> from portalfinder.cache.stores import InMemoryCacheStore
    >>>
    >>> store = InMemoryCacheStore()
    >>> await store.upsert(entry)
    >>> cached = await store.get(entry.fingerprint)
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any

import asyncpg

from portalfinder.cache.models import (
    CacheEntry,
    DailyStat,
    PopularQueryRecord,
    SynonymMapping,
    utcnow,
)
from portalfinder.core.exceptions import CacheIOError, CorruptEntryError

logger = logging.getLogger(__name__)


def serialize_result(result: dict[str, Any]) -> str:
    """Serialize a result payload for the search_results column."""
    return json.dumps(result)


def deserialize_result(data: str | bytes, fingerprint: str) -> dict[str, Any]:
    """Deserialize a stored payload.

    Raises:
        CorruptEntryError: If the payload is not a JSON object
    """
    try:
        result = json.loads(data)
    except (TypeError, ValueError) as e:
        raise CorruptEntryError(
            f"Stored payload is not valid JSON: {e}", fingerprint=fingerprint
        ) from e

    if not isinstance(result, dict):
        raise CorruptEntryError(
            f"Stored payload is {type(result).__name__}, expected object",
            fingerprint=fingerprint,
        )
    return result


def entry_to_row(entry: CacheEntry) -> dict[str, Any]:
    """Map a CacheEntry onto search_cache column names."""
    return {
        "query_hash": entry.fingerprint,
        "original_query": entry.original_query,
        "normalized_query": entry.normalized_query,
        "state": entry.state,
        "city": entry.city,
        "search_results": serialize_result(entry.result),
        "created_at": entry.created_at,
        "updated_at": entry.updated_at,
        "expires_at": entry.expires_at,
        "hit_count": entry.hit_count,
        "last_accessed": entry.last_accessed_at,
    }


def row_to_entry(row: Mapping[str, Any]) -> CacheEntry:
    """Build a CacheEntry from a search_cache row."""
    fingerprint = row["query_hash"]
    return CacheEntry(
        fingerprint=fingerprint,
        original_query=row["original_query"],
        normalized_query=row["normalized_query"],
        state=row["state"],
        city=row["city"],
        result=deserialize_result(row["search_results"], fingerprint),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        expires_at=row["expires_at"],
        hit_count=int(row["hit_count"]),
        last_accessed_at=row["last_accessed"],
    )


class CacheStore(ABC):
    """Abstract base class for the persistent tier.

    All methods are coroutines and may raise CacheIOError on backend
    failure. Callers (CacheService) decide how failures degrade.
    """

    # search_cache

    @abstractmethod
    async def get(self, fingerprint: str) -> CacheEntry | None:
        """Fetch a live (non-expired) entry.

        Args:
            fingerprint: Cache key from generate_cache_key()

        Returns:
            CacheEntry if found and not expired, None otherwise

        Raises:
            CorruptEntryError: If the stored payload cannot be deserialized
        """
        pass

    @abstractmethod
    async def upsert(self, entry: CacheEntry) -> None:
        """Insert or replace the entry keyed by its fingerprint."""
        pass

    @abstractmethod
    async def touch(self, fingerprint: str) -> bool:
        """Increment hit_count and refresh last access.

        Returns:
            True if a row was updated
        """
        pass

    @abstractmethod
    async def delete(self, fingerprint: str) -> bool:
        """Delete a single entry (used to purge corrupt rows)."""
        pass

    @abstractmethod
    async def delete_expired(self) -> int:
        """Delete rows with expires_at < now.

        Returns:
            Number of rows deleted
        """
        pass

    @abstractmethod
    async def delete_all(self) -> bool:
        """Delete every cached result.

        Returns:
            True on success
        """
        pass

    @abstractmethod
    async def count(self) -> int:
        """Count stored rows, expired or not."""
        pass

    # query_synonyms

    @abstractmethod
    async def find_synonym(self, phrases: Sequence[str]) -> SynonymMapping | None:
        """Find the best active mapping whose synonym_query is one of phrases.

        Highest confidence wins; ties go to the longer synonym phrase.
        """
        pass

    @abstractmethod
    async def seed_synonyms(self, mappings: Iterable[SynonymMapping]) -> int:
        """Insert synonym mappings, ignoring ones already present.

        Returns:
            Number of mappings inserted
        """
        pass

    # cache_stats

    @abstractmethod
    async def record_daily_outcome(
        self, day: date, was_hit: bool, response_time_ms: float
    ) -> None:
        """Upsert one completed lookup into the day's counters."""
        pass

    @abstractmethod
    async def get_daily_stats(self, since: date) -> list[DailyStat]:
        """Daily rows with date >= since, newest first."""
        pass

    # popular_queries

    @abstractmethod
    async def record_popular_query(
        self,
        normalized_query: str,
        state: str,
        result_count: int,
        now: datetime | None = None,
    ) -> None:
        """Upsert usage statistics for a stored query."""
        pass

    @abstractmethod
    async def get_popular_queries(self, limit: int) -> list[PopularQueryRecord]:
        """Top queries by search_count, ties broken by most recent search."""
        pass

    async def close(self) -> None:
        """Release backend resources (no-op by default)."""
        return None


class InMemoryCacheStore(CacheStore):
    """In-memory persistent tier for development and testing.

    Rows are kept in the same shape as the PostgreSQL tables, including the
    serialized payload, so corrupt-payload handling behaves identically.
    Not durable, single-process only.

    Thread Safety:
        Uses asyncio.Lock for read-modify-write operations.
    """

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, Any]] = {}
        self._daily: dict[date, DailyStat] = {}
        self._popular: dict[str, PopularQueryRecord] = {}
        self._synonyms: list[SynonymMapping] = []
        self._lock = asyncio.Lock()

    async def get(self, fingerprint: str) -> CacheEntry | None:
        row = self._rows.get(fingerprint)
        if row is None or row["expires_at"] <= utcnow():
            return None
        return row_to_entry(row)

    async def upsert(self, entry: CacheEntry) -> None:
        async with self._lock:
            self._rows[entry.fingerprint] = entry_to_row(entry)
        logger.debug(f"Stored cache entry: {entry.fingerprint[:8]}")

    async def touch(self, fingerprint: str) -> bool:
        async with self._lock:
            row = self._rows.get(fingerprint)
            if row is None:
                return False
            now = utcnow()
            row["hit_count"] += 1
            row["last_accessed"] = now
            row["updated_at"] = now
            return True

    async def delete(self, fingerprint: str) -> bool:
        async with self._lock:
            return self._rows.pop(fingerprint, None) is not None

    async def delete_expired(self) -> int:
        now = utcnow()
        async with self._lock:
            expired = [
                key for key, row in self._rows.items() if row["expires_at"] < now
            ]
            for key in expired:
                del self._rows[key]

        if expired:
            logger.info(f"Cleared {len(expired)} expired cache entries")
        return len(expired)

    async def delete_all(self) -> bool:
        async with self._lock:
            count = len(self._rows)
            self._rows.clear()
        logger.info(f"Cleared all cache entries ({count} entries)")
        return True

    async def count(self) -> int:
        return len(self._rows)

    async def find_synonym(self, phrases: Sequence[str]) -> SynonymMapping | None:
        wanted = set(phrases)
        candidates = [
            mapping
            for mapping in self._synonyms
            if mapping.is_active and mapping.synonym_query in wanted
        ]
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda mapping: (mapping.confidence_score, len(mapping.synonym_query)),
        )

    async def seed_synonyms(self, mappings: Iterable[SynonymMapping]) -> int:
        inserted = 0
        async with self._lock:
            existing = {(m.base_query, m.synonym_query) for m in self._synonyms}
            for mapping in mappings:
                pair = (mapping.base_query, mapping.synonym_query)
                if pair in existing:
                    continue
                self._synonyms.append(mapping)
                existing.add(pair)
                inserted += 1
        return inserted

    async def record_daily_outcome(
        self, day: date, was_hit: bool, response_time_ms: float
    ) -> None:
        async with self._lock:
            current = self._daily.get(day) or DailyStat(date=day)
            self._daily[day] = current.with_outcome(was_hit, response_time_ms)

    async def get_daily_stats(self, since: date) -> list[DailyStat]:
        rows = [stat for day, stat in self._daily.items() if day >= since]
        return sorted(rows, key=lambda stat: stat.date, reverse=True)

    async def record_popular_query(
        self,
        normalized_query: str,
        state: str,
        result_count: int,
        now: datetime | None = None,
    ) -> None:
        async with self._lock:
            record = self._popular.get(normalized_query)
            if record is None:
                record = PopularQueryRecord.first_search(
                    normalized_query, state, result_count, now
                )
            else:
                record = record.with_search(state, result_count, now)
            self._popular[normalized_query] = record

    async def get_popular_queries(self, limit: int) -> list[PopularQueryRecord]:
        ranked = sorted(
            self._popular.values(),
            key=lambda record: (record.search_count, record.last_searched_at),
            reverse=True,
        )
        return ranked[:limit]


class PostgresCacheStore(CacheStore):
    """PostgreSQL-based persistent tier.

    Table Schema: see portalfinder.core.database.SCHEMA_DDL (also shipped as
    an alembic migration).

    Atomicity:
        - Result upserts use INSERT ... ON CONFLICT DO UPDATE
        - Daily counters are a single upsert statement
        - Popular query updates run in a transaction with SELECT ... FOR UPDATE
    """

    _ENTRY_COLUMNS = (
        "query_hash, original_query, normalized_query, state, city, "
        "search_results, created_at, updated_at, expires_at, hit_count, "
        "last_accessed"
    )

    def __init__(self, pool: Any):  # asyncpg pool
        """Initialize PostgreSQL store.

        Args:
            pool: asyncpg connection pool
        """
        self.pool = pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        """Acquire a pooled connection, mapping driver errors to CacheIOError."""
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise CacheIOError(f"Persistent tier operation failed: {e}") from e

    async def get(self, fingerprint: str) -> CacheEntry | None:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                SELECT {self._ENTRY_COLUMNS}
                FROM search_cache
                WHERE query_hash = $1 AND expires_at > NOW()
                LIMIT 1
                """,
                fingerprint,
            )

        if row is None:
            return None
        return row_to_entry(row)

    async def upsert(self, entry: CacheEntry) -> None:
        row = entry_to_row(entry)
        async with self._connection() as conn:
            await conn.execute(
                f"""
                INSERT INTO search_cache ({self._ENTRY_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                ON CONFLICT (query_hash) DO UPDATE SET
                    original_query = EXCLUDED.original_query,
                    normalized_query = EXCLUDED.normalized_query,
                    state = EXCLUDED.state,
                    city = EXCLUDED.city,
                    search_results = EXCLUDED.search_results,
                    created_at = EXCLUDED.created_at,
                    updated_at = EXCLUDED.updated_at,
                    expires_at = EXCLUDED.expires_at,
                    hit_count = EXCLUDED.hit_count,
                    last_accessed = EXCLUDED.last_accessed
                """,
                *row.values(),
            )
        logger.debug(f"Stored cache entry in PostgreSQL: {entry.fingerprint[:8]}")

    async def touch(self, fingerprint: str) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                """
                UPDATE search_cache
                SET hit_count = hit_count + 1,
                    last_accessed = NOW(),
                    updated_at = NOW()
                WHERE query_hash = $1
                """,
                fingerprint,
            )
        return result.split()[-1] != "0"

    async def delete(self, fingerprint: str) -> bool:
        async with self._connection() as conn:
            result = await conn.execute(
                "DELETE FROM search_cache WHERE query_hash = $1", fingerprint
            )
        return result.split()[-1] != "0"

    async def delete_expired(self) -> int:
        async with self._connection() as conn:
            result = await conn.execute(
                "DELETE FROM search_cache WHERE expires_at < NOW()"
            )

        deleted = int(result.split()[-1])
        logger.info(f"Cleared {deleted} expired cache entries")
        return deleted

    async def delete_all(self) -> bool:
        async with self._connection() as conn:
            result = await conn.execute("DELETE FROM search_cache")

        logger.info(f"Cleared all cache entries ({result.split()[-1]} entries)")
        return True

    async def count(self) -> int:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT COUNT(*) FROM search_cache")
        return row[0] if row else 0

    async def find_synonym(self, phrases: Sequence[str]) -> SynonymMapping | None:
        if not phrases:
            return None

        async with self._connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT base_query, synonym_query, confidence_score, is_active
                FROM query_synonyms
                WHERE synonym_query = ANY($1::text[]) AND is_active
                ORDER BY confidence_score DESC, length(synonym_query) DESC
                LIMIT 1
                """,
                list(phrases),
            )

        if row is None:
            return None
        return SynonymMapping(
            base_query=row["base_query"],
            synonym_query=row["synonym_query"],
            confidence_score=float(row["confidence_score"]),
            is_active=bool(row["is_active"]),
        )

    async def seed_synonyms(self, mappings: Iterable[SynonymMapping]) -> int:
        records = [
            (m.base_query, m.synonym_query, m.confidence_score, m.is_active)
            for m in mappings
        ]
        if not records:
            return 0

        base, synonym, confidence, active = (list(column) for column in zip(*records))
        async with self._connection() as conn:
            inserted = await conn.fetch(
                """
                INSERT INTO query_synonyms
                    (base_query, synonym_query, confidence_score, is_active)
                SELECT * FROM unnest($1::text[], $2::text[], $3::float8[], $4::bool[])
                ON CONFLICT (base_query, synonym_query) DO NOTHING
                RETURNING id
                """,
                base,
                synonym,
                confidence,
                active,
            )
        return len(inserted)

    async def record_daily_outcome(
        self, day: date, was_hit: bool, response_time_ms: float
    ) -> None:
        hit = 1 if was_hit else 0
        # SET expressions see the pre-update row, so this is the same
        # incremental mean as DailyStat.with_outcome().
        async with self._connection() as conn:
            await conn.execute(
                """
                INSERT INTO cache_stats
                    (date, total_requests, cache_hits, cache_misses,
                     api_calls_saved, avg_response_time_ms)
                VALUES ($1, 1, $2, $3, $2, $4)
                ON CONFLICT (date) DO UPDATE SET
                    total_requests = cache_stats.total_requests + 1,
                    cache_hits = cache_stats.cache_hits + EXCLUDED.cache_hits,
                    cache_misses = cache_stats.cache_misses + EXCLUDED.cache_misses,
                    api_calls_saved = cache_stats.api_calls_saved + EXCLUDED.api_calls_saved,
                    avg_response_time_ms = (
                        cache_stats.avg_response_time_ms * cache_stats.total_requests
                        + EXCLUDED.avg_response_time_ms
                    ) / (cache_stats.total_requests + 1),
                    updated_at = NOW()
                """,
                day,
                hit,
                1 - hit,
                float(response_time_ms),
            )

    async def get_daily_stats(self, since: date) -> list[DailyStat]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT date, total_requests, cache_hits, cache_misses,
                       api_calls_saved, avg_response_time_ms
                FROM cache_stats
                WHERE date >= $1
                ORDER BY date DESC
                """,
                since,
            )

        return [
            DailyStat(
                date=row["date"],
                total_requests=int(row["total_requests"]),
                cache_hits=int(row["cache_hits"]),
                cache_misses=int(row["cache_misses"]),
                api_calls_saved=int(row["api_calls_saved"]),
                avg_response_time_ms=float(row["avg_response_time_ms"]),
            )
            for row in rows
        ]

    async def record_popular_query(
        self,
        normalized_query: str,
        state: str,
        result_count: int,
        now: datetime | None = None,
    ) -> None:
        first = PopularQueryRecord.first_search(
            normalized_query, state, result_count, now
        )

        async with self._connection() as conn, conn.transaction():
            inserted = await conn.fetchrow(
                """
                INSERT INTO popular_queries
                    (normalized_query, search_count, avg_results,
                     states_searched, last_searched)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (normalized_query) DO NOTHING
                RETURNING normalized_query
                """,
                first.normalized_query,
                first.search_count,
                first.avg_results,
                json.dumps(first.states_searched),
                first.last_searched_at,
            )
            if inserted is not None:
                return

            row = await conn.fetchrow(
                """
                SELECT normalized_query, search_count, avg_results,
                       states_searched, last_searched
                FROM popular_queries
                WHERE normalized_query = $1
                FOR UPDATE
                """,
                normalized_query,
            )
            record = self._row_to_popular(row).with_search(state, result_count, now)
            await conn.execute(
                """
                UPDATE popular_queries
                SET search_count = $2,
                    avg_results = $3,
                    states_searched = $4,
                    last_searched = $5,
                    updated_at = NOW()
                WHERE normalized_query = $1
                """,
                record.normalized_query,
                record.search_count,
                record.avg_results,
                json.dumps(record.states_searched),
                record.last_searched_at,
            )

    async def get_popular_queries(self, limit: int) -> list[PopularQueryRecord]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                """
                SELECT normalized_query, search_count, avg_results,
                       states_searched, last_searched
                FROM popular_queries
                ORDER BY search_count DESC, last_searched DESC
                LIMIT $1
                """,
                limit,
            )
        return [self._row_to_popular(row) for row in rows]

    @staticmethod
    def _row_to_popular(row: Mapping[str, Any]) -> PopularQueryRecord:
        try:
            states = json.loads(row["states_searched"] or "[]")
        except (TypeError, ValueError):
            states = []

        return PopularQueryRecord(
            normalized_query=row["normalized_query"],
            search_count=int(row["search_count"]),
            avg_results=float(row["avg_results"]),
            states_searched=states,
            last_searched_at=row["last_searched"],
        )
