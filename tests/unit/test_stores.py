"""Unit tests for persistent tier storage backends."""

import json
from datetime import date, timedelta

import asyncpg
import pytest

from portalfinder.cache.models import SynonymMapping, utcnow
from portalfinder.cache.stores import (
    InMemoryCacheStore,
    PostgresCacheStore,
    deserialize_result,
    entry_to_row,
    row_to_entry,
)
from portalfinder.core.exceptions import CacheIOError, CorruptEntryError


@pytest.fixture
def expired_entry(make_entry):
    """Entry whose expiry has already passed."""
    past = utcnow() - timedelta(hours=2)
    return make_entry(fingerprint="e" * 64).model_copy(
        update={
            "created_at": past,
            "updated_at": past,
            "last_accessed_at": past,
            "expires_at": past + timedelta(hours=1),
        }
    )


class TestRowMapping:
    """Tests for payload and row conversion helpers."""

    def test_row_round_trip(self, make_entry):
        """Test a row built from an entry maps back to an equal entry."""
        entry = make_entry()
        assert row_to_entry(entry_to_row(entry)) == entry

    def test_payload_stored_as_json_text(self, make_entry):
        """Test search_results holds serialized JSON."""
        row = entry_to_row(make_entry(result={"services": [], "note": "x"}))
        assert json.loads(row["search_results"]) == {"services": [], "note": "x"}

    def test_invalid_json_is_corrupt(self):
        """Test malformed payloads raise CorruptEntryError with the fingerprint."""
        with pytest.raises(CorruptEntryError) as exc_info:
            deserialize_result("{not json", "f" * 64)
        assert exc_info.value.fingerprint == "f" * 64

    def test_non_object_is_corrupt(self):
        """Test a JSON array payload is rejected."""
        with pytest.raises(CorruptEntryError):
            deserialize_result("[1, 2, 3]", "f" * 64)


class TestInMemoryCacheStore:
    """Tests for InMemoryCacheStore."""

    async def test_upsert_and_get(self, memory_store, make_entry):
        """Test a stored entry is returned."""
        entry = make_entry()
        await memory_store.upsert(entry)

        cached = await memory_store.get(entry.fingerprint)
        assert cached == entry

    async def test_get_missing(self, memory_store):
        """Test a missing fingerprint returns None."""
        assert await memory_store.get("0" * 64) is None

    async def test_upsert_replaces(self, memory_store, make_entry):
        """Test last write wins for the same fingerprint."""
        await memory_store.upsert(make_entry(result={"services": [1]}))
        await memory_store.upsert(make_entry(result={"services": [1, 2]}))

        cached = await memory_store.get("a" * 64)
        assert cached.result == {"services": [1, 2]}
        assert await memory_store.count() == 1

    async def test_expired_not_returned(self, memory_store, expired_entry):
        """Test get() hides rows past expires_at."""
        await memory_store.upsert(expired_entry)
        assert await memory_store.get(expired_entry.fingerprint) is None
        assert await memory_store.count() == 1

    async def test_corrupt_row_raises(self, memory_store, make_entry):
        """Test an unreadable stored payload raises CorruptEntryError."""
        entry = make_entry()
        await memory_store.upsert(entry)
        memory_store._rows[entry.fingerprint]["search_results"] = "{broken"

        with pytest.raises(CorruptEntryError):
            await memory_store.get(entry.fingerprint)

    async def test_touch(self, memory_store, make_entry):
        """Test touch increments hit_count."""
        entry = make_entry()
        await memory_store.upsert(entry)

        assert await memory_store.touch(entry.fingerprint) is True
        assert (await memory_store.get(entry.fingerprint)).hit_count == 2
        assert await memory_store.touch("0" * 64) is False

    async def test_delete_expired(self, memory_store, make_entry, expired_entry):
        """Test only expired rows are deleted."""
        await memory_store.upsert(make_entry())
        await memory_store.upsert(expired_entry)

        assert await memory_store.delete_expired() == 1
        assert await memory_store.count() == 1

    async def test_delete_all(self, memory_store, make_entry):
        """Test delete_all removes every row but keeps statistics."""
        await memory_store.upsert(make_entry())
        await memory_store.record_daily_outcome(date.today(), True, 5.0)

        assert await memory_store.delete_all() is True
        assert await memory_store.count() == 0
        assert len(await memory_store.get_daily_stats(date.today())) == 1

    async def test_find_synonym_prefers_confidence(self, memory_store):
        """Test the highest-confidence active mapping wins."""
        await memory_store.seed_synonyms(
            [
                SynonymMapping(base_query="a", synonym_query="x", confidence_score=0.5),
                SynonymMapping(base_query="b", synonym_query="y", confidence_score=0.9),
                SynonymMapping(
                    base_query="c", synonym_query="z", confidence_score=1.0, is_active=False
                ),
            ]
        )

        mapping = await memory_store.find_synonym(["x", "y", "z"])
        assert mapping.base_query == "b"

    async def test_seed_ignores_duplicates(self, memory_store):
        """Test seeding the same pair twice inserts it once."""
        mapping = SynonymMapping(base_query="voter id", synonym_query="voter card")

        assert await memory_store.seed_synonyms([mapping]) == 1
        assert await memory_store.seed_synonyms([mapping]) == 0

    async def test_daily_outcomes(self, memory_store):
        """Test daily counters and the incremental mean."""
        today = date.today()
        await memory_store.record_daily_outcome(today, True, 10.0)
        await memory_store.record_daily_outcome(today, False, 20.0)

        [row] = await memory_store.get_daily_stats(today)
        assert row.total_requests == 2
        assert row.cache_hits == 1
        assert row.cache_misses == 1
        assert row.api_calls_saved == 1
        assert row.avg_response_time_ms == pytest.approx(15.0)

    async def test_daily_stats_newest_first(self, memory_store):
        """Test rows are filtered by date and sorted newest first."""
        today = date.today()
        for offset in range(3):
            await memory_store.record_daily_outcome(
                today - timedelta(days=offset), True, 1.0
            )

        rows = await memory_store.get_daily_stats(today - timedelta(days=1))
        assert [row.date for row in rows] == [today, today - timedelta(days=1)]

    async def test_popular_queries(self, memory_store):
        """Test ranking by search_count and two-point smoothing."""
        await memory_store.record_popular_query("pan card", "Goa", 4)
        await memory_store.record_popular_query("pan card", "Kerala", 2)
        await memory_store.record_popular_query("voter id", "Goa", 1)

        top = await memory_store.get_popular_queries(10)
        assert [r.normalized_query for r in top] == ["pan card", "voter id"]
        assert top[0].search_count == 2
        assert top[0].avg_results == pytest.approx(3.0)
        assert top[0].states_searched == ["Goa", "Kerala"]

    async def test_popular_ties_broken_by_recency(self, memory_store):
        """Test equal counts rank the most recent search first."""
        now = utcnow()
        await memory_store.record_popular_query("pan card", "Goa", 1, now)
        await memory_store.record_popular_query(
            "voter id", "Goa", 1, now + timedelta(seconds=1)
        )

        top = await memory_store.get_popular_queries(1)
        assert top[0].normalized_query == "voter id"


class TestPostgresCacheStore:
    """Tests for PostgresCacheStore with a mocked asyncpg pool."""

    @pytest.fixture
    def store(self, mock_pool):
        return PostgresCacheStore(mock_pool)

    async def test_get_miss(self, store, mock_connection):
        """Test get filters expired rows in SQL and returns None on no row."""
        assert await store.get("a" * 64) is None

        sql = mock_connection.fetchrow.call_args[0][0]
        assert "expires_at > NOW()" in sql
        assert mock_connection.fetchrow.call_args[0][1] == "a" * 64

    async def test_get_hit(self, store, mock_connection, make_entry):
        """Test a row is mapped to a CacheEntry."""
        entry = make_entry()
        mock_connection.fetchrow.return_value = entry_to_row(entry)

        assert await store.get(entry.fingerprint) == entry

    async def test_get_corrupt(self, store, mock_connection, make_entry):
        """Test an undecodable payload raises CorruptEntryError."""
        row = entry_to_row(make_entry())
        row["search_results"] = "{{{"
        mock_connection.fetchrow.return_value = row

        with pytest.raises(CorruptEntryError):
            await store.get("a" * 64)

    async def test_upsert(self, store, mock_connection, make_entry):
        """Test upsert is a single INSERT ... ON CONFLICT statement."""
        await store.upsert(make_entry())

        mock_connection.execute.assert_called_once()
        sql = mock_connection.execute.call_args[0][0]
        assert "INSERT INTO search_cache" in sql
        assert "ON CONFLICT (query_hash) DO UPDATE" in sql
        assert len(mock_connection.execute.call_args[0]) == 12

    async def test_touch_reports_rowcount(self, store, mock_connection):
        """Test touch parses the UPDATE status tag."""
        mock_connection.execute.return_value = "UPDATE 1"
        assert await store.touch("a" * 64) is True

        mock_connection.execute.return_value = "UPDATE 0"
        assert await store.touch("a" * 64) is False

    async def test_delete_expired_count(self, store, mock_connection):
        """Test delete_expired returns the DELETE row count."""
        mock_connection.execute.return_value = "DELETE 3"

        assert await store.delete_expired() == 3
        assert "expires_at < NOW()" in mock_connection.execute.call_args[0][0]

    async def test_delete_all(self, store, mock_connection):
        """Test delete_all clears search_cache only."""
        mock_connection.execute.return_value = "DELETE 7"

        assert await store.delete_all() is True
        assert mock_connection.execute.call_args[0][0] == "DELETE FROM search_cache"

    async def test_find_synonym(self, store, mock_connection):
        """Test synonym lookup passes candidate phrases as an array."""
        mock_connection.fetchrow.return_value = {
            "base_query": "driving license",
            "synonym_query": "dl",
            "confidence_score": 0.85,
            "is_active": True,
        }

        mapping = await store.find_synonym(["dl renewal", "dl", "renewal"])

        assert mapping.base_query == "driving license"
        assert mock_connection.fetchrow.call_args[0][1] == ["dl renewal", "dl", "renewal"]

    async def test_find_synonym_no_phrases(self, store, mock_connection):
        """Test an empty phrase list skips the query."""
        assert await store.find_synonym([]) is None
        mock_connection.fetchrow.assert_not_called()

    async def test_seed_synonyms(self, store, mock_connection):
        """Test seeding counts only the rows actually inserted."""
        mock_connection.fetch.return_value = [{"id": 7}]

        count = await store.seed_synonyms(
            [
                SynonymMapping(base_query="voter id", synonym_query="voter card"),
                SynonymMapping(base_query="pan card", synonym_query="pan"),
            ]
        )

        assert count == 1
        args = mock_connection.fetch.call_args[0]
        assert "ON CONFLICT (base_query, synonym_query) DO NOTHING" in args[0]
        assert "RETURNING id" in args[0]
        assert args[1:] == (
            ["voter id", "pan card"],
            ["voter card", "pan"],
            [1.0, 1.0],
            [True, True],
        )

    async def test_seed_nothing(self, store, mock_connection):
        assert await store.seed_synonyms([]) == 0
        mock_connection.fetch.assert_not_called()

    async def test_record_daily_outcome(self, store, mock_connection):
        """Test daily counters are a single upsert."""
        today = date.today()
        await store.record_daily_outcome(today, True, 12.5)

        args = mock_connection.execute.call_args[0]
        assert "ON CONFLICT (date) DO UPDATE" in args[0]
        assert args[1:] == (today, 1, 0, 12.5)

    async def test_get_daily_stats(self, store, mock_connection):
        """Test rows are mapped to DailyStat."""
        today = date.today()
        mock_connection.fetch.return_value = [
            {
                "date": today,
                "total_requests": 10,
                "cache_hits": 7,
                "cache_misses": 3,
                "api_calls_saved": 7,
                "avg_response_time_ms": 4.5,
            }
        ]

        [row] = await store.get_daily_stats(today)
        assert row.cache_hits == 7
        assert row.avg_response_time_ms == 4.5

    async def test_record_popular_first_search(self, store, mock_connection):
        """Test a new query is inserted without a follow-up update."""
        mock_connection.fetchrow.return_value = {"normalized_query": "pan card"}

        await store.record_popular_query("pan card", "Goa", 3)

        mock_connection.fetchrow.assert_called_once()
        mock_connection.execute.assert_not_called()
        mock_connection.transaction.assert_called_once()

    async def test_record_popular_repeat_search(self, store, mock_connection):
        """Test an existing query is locked and updated with smoothing."""
        existing = {
            "normalized_query": "pan card",
            "search_count": 1,
            "avg_results": 4.0,
            "states_searched": json.dumps(["Goa"]),
            "last_searched": utcnow(),
        }
        mock_connection.fetchrow.side_effect = [None, existing]

        await store.record_popular_query("pan card", "Kerala", 2)

        assert "FOR UPDATE" in mock_connection.fetchrow.call_args_list[1][0][0]
        args = mock_connection.execute.call_args[0]
        assert args[1:5] == ("pan card", 2, 3.0, json.dumps(["Goa", "Kerala"]))

    async def test_get_popular_queries(self, store, mock_connection):
        """Test states_searched is decoded from JSON text."""
        mock_connection.fetch.return_value = [
            {
                "normalized_query": "pan card",
                "search_count": 5,
                "avg_results": 2.5,
                "states_searched": '["Goa"]',
                "last_searched": utcnow(),
            }
        ]

        [record] = await store.get_popular_queries(5)
        assert record.states_searched == ["Goa"]
        assert mock_connection.fetch.call_args[0][1] == 5

    async def test_postgres_error_maps_to_cache_io_error(self, store, mock_connection):
        """Test driver errors surface as CacheIOError."""
        mock_connection.fetchrow.side_effect = asyncpg.PostgresError("relation missing")

        with pytest.raises(CacheIOError):
            await store.get("a" * 64)

    async def test_interface_error_maps_to_cache_io_error(self, store, mock_connection):
        """Test pool/interface errors surface as CacheIOError."""
        mock_connection.execute.side_effect = asyncpg.InterfaceError("pool is closing")

        with pytest.raises(CacheIOError):
            await store.delete_expired()

    async def test_connection_refused_maps_to_cache_io_error(self, store, mock_pool):
        """Test OS-level connection failures surface as CacheIOError."""
        mock_pool.acquire.return_value.__aenter__.side_effect = ConnectionRefusedError()

        with pytest.raises(CacheIOError):
            await store.count()
