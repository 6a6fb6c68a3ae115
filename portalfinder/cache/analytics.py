"""Usage analytics for the query-result cache.

StatsAggregator: per-day hit/miss/latency counters, driven by lookups only.
PopularQueryTracker: per-query usage ranking, driven by stores only.

Both statistics are approximations kept for compatibility with existing
dashboards:
    - the window's average response time is the mean of per-day averages,
      not weighted by daily volume
    - avg_results uses two-point smoothing, (old + new) / 2
"""

import logging
from datetime import date, timedelta
from typing import Any

from portalfinder.cache.models import (
    CacheStatsReport,
    CacheStatsSummary,
    PopularQueryRecord,
    utcnow,
)
from portalfinder.cache.stores import CacheStore

logger = logging.getLogger(__name__)


def format_rate(numerator: float, denominator: float) -> str:
    """Percentage with two decimals; "0.00" for an empty denominator."""
    if denominator <= 0:
        return "0.00"
    return f"{numerator / denominator * 100:.2f}"


class StatsAggregator:
    """Daily lookup counters stored in the cache_stats table."""

    def __init__(self, store: CacheStore):
        self.store = store

    @staticmethod
    def today() -> date:
        return utcnow().date()

    async def record_outcome(self, was_hit: bool, response_time_ms: float) -> None:
        """Fold one completed lookup into today's row.

        A hit also counts as one avoided external generation call.
        """
        await self.store.record_daily_outcome(
            self.today(), was_hit, max(0.0, float(response_time_ms))
        )

    async def summarize(self, days: int, memory_tier_size: int = 0) -> CacheStatsReport:
        """Aggregate the trailing window of daily rows.

        Args:
            days: Window length; rows dated today-days .. today are included
            memory_tier_size: Current memory tier size to report alongside

        Returns:
            CacheStatsReport with summary and daily rows (newest first)
        """
        since = self.today() - timedelta(days=max(days, 0))
        daily = await self.store.get_daily_stats(since)

        total = sum(row.total_requests for row in daily)
        hits = sum(row.cache_hits for row in daily)
        misses = sum(row.cache_misses for row in daily)
        saved = sum(row.api_calls_saved for row in daily)
        avg_response = (
            sum(row.avg_response_time_ms for row in daily) / len(daily) if daily else 0.0
        )

        summary = CacheStatsSummary(
            total_requests=total,
            cache_hits=hits,
            cache_misses=misses,
            hit_rate=format_rate(hits, total),
            api_calls_saved=saved,
            avg_response_time_ms=f"{avg_response:.2f}",
            memory_tier_size=memory_tier_size,
        )
        return CacheStatsReport(summary=summary, daily=daily)


class PopularQueryTracker:
    """Ranked usage statistics per normalized query."""

    def __init__(self, store: CacheStore, result_count_key: str = "services"):
        self.store = store
        self.result_count_key = result_count_key

    def result_count(self, result: dict[str, Any]) -> int:
        """Number of items in the payload's result list (0 if absent)."""
        items = result.get(self.result_count_key)
        return len(items) if isinstance(items, list) else 0

    async def record(self, normalized_query: str, state: str, result_count: int) -> None:
        await self.store.record_popular_query(normalized_query, state, result_count)

    async def top_queries(self, limit: int) -> list[PopularQueryRecord]:
        """Most searched queries, ties broken by most recent search."""
        if limit <= 0:
            return []
        return await self.store.get_popular_queries(limit)
