"""CLI for the catalog cache: one-shot sync, statistics and purge."""

import asyncio
import json
import logging
from typing import List, Optional

import typer

from catalog_cache.config import get_settings
from catalog_cache.facade import CatalogCache
from catalog_cache.stats import CacheStats
from catalog_cache.sync import SyncRun
from catalog_cache.tmdb_client import TMDBClient

app = typer.Typer(
    name="catalog-cache",
    help="Catalog metadata cache maintenance",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("movie", "tv")


def setup() -> None:
    """Configure logging from settings."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _print_stats(stats: CacheStats) -> None:
    typer.echo("Cache statistics:")
    typer.echo(f"   - Total entries: {stats.total_entries}")
    typer.echo(f"   - Valid entries: {stats.valid_entries}")
    typer.echo(f"   - Expired entries: {stats.expired_entries}")
    typer.echo(f"   - Max size: {stats.max_size if stats.max_size is not None else 'unbounded'}")
    if stats.oldest_entry:
        typer.echo(f"   - Oldest entry: {stats.oldest_entry.isoformat()}")


async def _sync(count: int, media_types: List[str]) -> tuple[List[SyncRun], CacheStats]:
    settings = get_settings()
    client = TMDBClient(settings)
    cache = CatalogCache.from_settings(settings, client=client)
    await cache.start()
    try:
        reports = await cache.sync_catalog(count, media_types)
        stats = await cache.get_stats()
    finally:
        await cache.close()
        await client.close()
    return reports, stats


async def _stats() -> CacheStats:
    cache = CatalogCache.from_settings(get_settings())
    await cache.start()
    try:
        return await cache.get_stats()
    finally:
        await cache.close()


async def _purge() -> int:
    cache = CatalogCache.from_settings(get_settings())
    await cache.start()
    try:
        return await cache.purge_expired()
    finally:
        await cache.close()


@app.command("sync")
def sync(
    count: Optional[int] = typer.Option(
        None,
        "--count",
        "-n",
        min=0,
        help="Items to sync per listing (defaults to SYNC_DEFAULT_COUNT)",
    ),
    media_types: Optional[List[str]] = typer.Option(
        None,
        "--media-type",
        "-t",
        help="Listing to sync, movie or tv; repeatable (defaults to TMDB_MEDIA_TYPES)",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the run reports as JSON"),
):
    """Populate the cache from the upstream popular listings."""
    setup()
    settings = get_settings()
    requested = count if count is not None else settings.sync_default_count
    listings = media_types or list(settings.tmdb_media_types)
    unknown = [m for m in listings if m not in MEDIA_TYPES]
    if unknown:
        raise typer.BadParameter(
            f"unknown media type(s): {', '.join(unknown)}",
            param_hint="--media-type",
        )
    typer.echo(f"Starting catalog sync for {requested} items per listing ({', '.join(listings)})...")

    reports, stats = asyncio.run(_sync(requested, listings))

    if as_json:
        typer.echo(json.dumps([r.model_dump(mode="json") for r in reports], indent=2))
    else:
        for report in reports:
            typer.echo(
                f"Sync {report.media_type} {report.status.value}: processed={report.processed} "
                f"succeeded={report.succeeded} failed={report.failed} "
                f"skipped={report.skipped_duplicate} in {report.elapsed_seconds:.2f}s"
            )
        _print_stats(stats)

    early = [r for r in reports if r.ended_early]
    for report in early:
        typer.echo(
            f"Sync of {report.media_type} ended early: {report.error or report.status.value}",
            err=True,
        )
    if early:
        raise typer.Exit(1)


@app.command("stats")
def stats(as_json: bool = typer.Option(False, "--json", help="Print as JSON")):
    """Show cache health statistics."""
    setup()
    result = asyncio.run(_stats())
    if as_json:
        typer.echo(json.dumps(result.to_report(), indent=2))
    else:
        _print_stats(result)


@app.command("purge")
def purge():
    """Remove expired entries."""
    setup()
    removed = asyncio.run(_purge())
    typer.echo(f"Removed {removed} expired entries")


if __name__ == "__main__":
    app()
