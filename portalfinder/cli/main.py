"""Command-line interface for PortalFinder cache administration."""

import asyncio
import json
import logging
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TypeVar

import click
import uvicorn

from portalfinder import __version__
from portalfinder.api.app import create_app
from portalfinder.cache.service import CacheService
from portalfinder.cache.warming import COMMON_QUERIES, STATE_CAPITALS, warm_cache
from portalfinder.core.config import load_cache_config, settings
from portalfinder.core.database import Database
from portalfinder.core.exceptions import PortalFinderError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@asynccontextmanager
async def open_service() -> AsyncIterator[CacheService]:
    """Connect to PostgreSQL and yield a started CacheService."""
    if not settings.database_url:
        raise click.ClickException("DATABASE_URL must be set for cache administration")

    database = Database(
        settings.database_url,
        min_size=1,
        max_size=settings.database_pool_max_size,
    )
    await database.connect()
    try:
        await database.apply_schema(seed_synonyms=False)
        service = CacheService(database.cache_store(), load_cache_config())
        await service.start()
        try:
            yield service
        finally:
            await service.stop()
    finally:
        await database.disconnect()


def _run(operation: Callable[[CacheService], Awaitable[T]]) -> T:
    """Run one admin operation against a freshly opened service."""

    async def execute() -> T:
        async with open_service() as service:
            return await operation(service)

    try:
        return asyncio.run(execute())
    except PortalFinderError as e:
        logger.error(f"Error: {e}")
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)


@click.group()
def cli() -> None:
    """PortalFinder - query-result cache administration."""
    pass


@cli.command()
@click.option("--host", default=settings.api_host, help="Host to bind to", show_default=True)
@click.option(
    "--port", default=settings.api_port, type=int, help="Port to bind to", show_default=True
)
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
@click.option(
    "--log-level",
    default=settings.log_level.lower(),
    type=click.Choice(["debug", "info", "warning", "error"]),
    help="Logging level",
    show_default=True,
)
def serve(host: str, port: int, reload: bool, log_level: str) -> None:
    """Start the cache API server."""
    logger.info(f"Starting PortalFinder cache API server on {host}:{port}")

    if reload:
        uvicorn.run(
            "portalfinder.api.app:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level=log_level,
        )
    else:
        uvicorn.run(create_app(), host=host, port=port, log_level=log_level)


@cli.command()
@click.option("--days", default=7, type=int, help="Trailing window in days", show_default=True)
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
def stats(days: int, output_json: bool) -> None:
    """Show cache hit/miss statistics."""
    report = _run(lambda service: service.stats(days))

    if output_json:
        click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        return

    summary = report.summary
    click.echo(f"\n{'=' * 60}")
    click.echo(f"Cache statistics (last {days} days)")
    click.echo(f"{'=' * 60}")
    click.echo(f"Total requests:    {summary.total_requests}")
    click.echo(f"Cache hits:        {summary.cache_hits}")
    click.echo(f"Cache misses:      {summary.cache_misses}")
    click.echo(f"Hit rate:          {summary.hit_rate}%")
    click.echo(f"API calls saved:   {summary.api_calls_saved}")
    click.echo(f"Avg response time: {summary.avg_response_time_ms} ms")
    for day in report.daily:
        click.echo(
            f"  {day.date.isoformat()}  {day.total_requests:>6} requests  "
            f"{day.cache_hits:>6} hits"
        )


@cli.command()
@click.option("--limit", default=20, type=int, help="Number of queries", show_default=True)
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
def popular(limit: int, output_json: bool) -> None:
    """Show the most frequently stored queries."""
    records = _run(lambda service: service.popular_queries(limit))

    if output_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        click.echo("No popular queries recorded yet")
        return

    for rank, record in enumerate(records, start=1):
        states = ", ".join(record.states_searched)
        click.echo(
            f"{rank:>3}. {record.normalized_query} "
            f"({record.search_count} searches, avg {record.avg_results:.1f} results) [{states}]"
        )


@cli.command("clear-expired")
def clear_expired() -> None:
    """Delete expired cache entries."""
    cleared = _run(lambda service: service.clear_expired())
    click.echo(f"Cleared {cleared} expired cache entries")


@cli.command("clear-all")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt")
def clear_all(yes: bool) -> None:
    """Delete every cached result (statistics are kept)."""
    if not yes:
        click.confirm("This removes ALL cached results. Continue?", abort=True)
    _run(lambda service: service.clear_all())
    click.echo("All cache entries cleared")


@cli.command()
@click.option(
    "--queries",
    "query_count",
    default=20,
    type=int,
    help="Number of common queries to warm",
    show_default=True,
)
@click.option(
    "--states",
    "state_count",
    default=10,
    type=int,
    help="Number of states to warm",
    show_default=True,
)
def warm(query_count: int, state_count: int) -> None:
    """Pre-populate the cache with placeholder results for common queries."""
    queries = COMMON_QUERIES[:query_count]
    states = list(STATE_CAPITALS)[:state_count]
    click.echo(f"Warming {len(queries)} queries across {len(states)} states...")

    report = _run(
        lambda service: warm_cache(service, queries, states, cities=STATE_CAPITALS)
    )

    click.echo(f"Warmed:  {report.warmed_entries}")
    click.echo(f"Skipped: {report.skipped_entries} (already cached)")
    click.echo(f"Errors:  {len(report.errors)}")
    for error in report.errors[:5]:
        click.echo(f"  {error}", err=True)


@cli.command()
def version() -> None:
    """Show version information."""
    click.echo(f"PortalFinder cache v{__version__}")


if __name__ == "__main__":
    cli()
