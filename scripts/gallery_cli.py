#!/usr/bin/env python3
"""Terminal front end for browsing the picsum gallery and managing its image cache."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

import typer
from rich.console import Console
from rich.table import Table

from gallery.errors import ListingError
from gallery.event_log import load_cache_events
from gallery.favorites import Favorites
from gallery.image_cache import ImageCacheManager, build_cache_manager
from gallery.listing_client import fetch_image_page
from gallery.schemas import CacheStats, ImageRecord
from gallery.settings import Settings, get_settings
from gallery.store import KeyValueStore, build_store

console = Console()
cli = typer.Typer(help="Browse the picsum gallery with a local image cache")
favorites_cli = typer.Typer(help="List and toggle favorite images.")
cli.add_typer(favorites_cli, name="favorites")
cache_cli = typer.Typer(help="Inspect and maintain the local image cache.")
cli.add_typer(cache_cli, name="cache")


def _settings() -> Settings:
    return get_settings()


def _configure_logging(settings: Settings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.logging.level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_store(settings: Settings) -> KeyValueStore:
    return build_store(settings.storage.db_path)


def _build_manager(settings: Settings, store: KeyValueStore) -> ImageCacheManager:
    return build_cache_manager(settings=settings, store=store)


async def _fetch_page(settings: Settings, *, page: int, limit: int | None) -> list[ImageRecord]:
    return await fetch_image_page(page=page, limit=limit, settings=settings)


def _print_images(rows: Iterable[tuple[ImageRecord, str]], favorites: Favorites, *, title: str) -> None:
    table = Table("ID", "Author", "♥", "Display", title=title)
    for record, display in rows:
        marker = "[red]♥[/]" if favorites.is_favorite(record.id) else ""
        table.add_row(record.id, record.author or "—", marker, display)
    console.print(table)


def _print_stats(stats: CacheStats, cache_dir: Path) -> None:
    table = Table("Field", "Value", title=f"Image cache ({cache_dir})")
    for key, value in stats.model_dump().items():
        table.add_row(key, "—" if value is None else str(value))
    console.print(table)


@cli.command()
def browse(
    page: int = typer.Option(1, "--page", min=1, help="Listing page to show"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Images per page"),
    cache: bool = typer.Option(True, "--cache/--no-cache", help="Resolve each image through the local cache"),
    json_output: bool = typer.Option(False, "--json", help="Print raw JSON instead of a table."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Show one page of the gallery."""

    settings = _settings()
    _configure_logging(settings, verbose)
    store = _build_store(settings)
    favorites = Favorites(store)
    favorites.load()

    async def _run() -> list[tuple[ImageRecord, str]]:
        records = await _fetch_page(settings, page=page, limit=limit)
        if not cache:
            return [(record, record.download_url) for record in records]
        async with _build_manager(settings, store) as manager:
            await manager.prefetch(record.download_url for record in records)
            return [(record, await manager.resolve(record.download_url)) for record in records]

    try:
        rows = asyncio.run(_run())
    except ListingError as exc:
        console.print(f"[red]Could not load page {page}: {exc}[/]")
        raise typer.Exit(1) from exc

    if json_output:
        payload = [{**record.model_dump(), "display": display} for record, display in rows]
        console.print_json(data=payload)
        return
    if not rows:
        console.print("[dim]No images on this page.[/]")
        return
    _print_images(rows, favorites, title=f"Page {page}")


@favorites_cli.command("list")
def favorites_list(
    json_output: bool = typer.Option(False, "--json", help="Print raw JSON instead of a table."),
) -> None:
    settings = _settings()
    favorites = Favorites(_build_store(settings))
    favorites.load()
    records = favorites.placeholder_records()
    if json_output:
        console.print_json(data=[record.model_dump() for record in records])
        return
    if not records:
        console.print("[dim]No favorites yet.[/]")
        return
    _print_images(((record, record.download_url) for record in records), favorites, title="Favorites")


@favorites_cli.command("toggle")
def favorites_toggle(image_id: str = typer.Argument(..., help="Listing image id")) -> None:
    settings = _settings()
    favorites = Favorites(_build_store(settings))
    favorites.load()
    if favorites.toggle(image_id):
        console.print(f"[green]Added {image_id} to favorites.[/]")
    else:
        console.print(f"[yellow]Removed {image_id} from favorites.[/]")


@cache_cli.command("resolve")
def cache_resolve(
    url: str = typer.Argument(..., help="Remote image URL"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Print the local path for URL, downloading it if needed."""

    settings = _settings()
    _configure_logging(settings, verbose)
    store = _build_store(settings)

    async def _run() -> str:
        async with _build_manager(settings, store) as manager:
            return await manager.resolve(url)

    resolved = asyncio.run(_run())
    if resolved == url:
        console.print(f"[yellow]Not cached; using remote URL {url}[/]", soft_wrap=True)
        raise typer.Exit(1)
    console.print(resolved, soft_wrap=True, markup=False, highlight=False)


@cache_cli.command("clear")
def cache_clear(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Delete every cached image and the cache index."""

    if not yes and not typer.confirm("Delete all cached images?"):
        raise typer.Abort()
    settings = _settings()
    store = _build_store(settings)

    async def _run() -> int:
        async with _build_manager(settings, store) as manager:
            count = len(await manager.index())
            await manager.clear()
            return count

    count = asyncio.run(_run())
    console.print(f"[green]Cleared {count} cached image(s).[/]")


@cache_cli.command("prune")
def cache_prune() -> None:
    """Remove expired entries and entries whose file is gone."""

    settings = _settings()
    store = _build_store(settings)

    async def _run() -> int:
        async with _build_manager(settings, store) as manager:
            return await manager.prune()

    removed = asyncio.run(_run())
    console.print(f"[green]Pruned {removed} stale entr{'y' if removed == 1 else 'ies'}.[/]")


@cache_cli.command("stats")
def cache_stats(
    json_output: bool = typer.Option(False, "--json", help="Print raw JSON instead of a table."),
) -> None:
    settings = _settings()
    store = _build_store(settings)

    async def _run() -> tuple[CacheStats, Path]:
        async with _build_manager(settings, store) as manager:
            return await manager.stats(), manager.cache_dir

    stats, cache_dir = asyncio.run(_run())
    if json_output:
        console.print_json(data=stats.model_dump(mode="json"))
        return
    _print_stats(stats, cache_dir)


@cache_cli.command("events")
def cache_events(
    limit: int = typer.Option(20, "--limit", min=1, help="Most recent events to show"),
    json_output: bool = typer.Option(False, "--json", help="Print raw JSON lines."),
) -> None:
    """Show recent cache failure events from CACHE_EVENT_LOG_PATH."""

    settings = _settings()
    log_path = settings.logging.event_log_path
    if log_path is None:
        console.print("[dim]CACHE_EVENT_LOG_PATH is not set; no events recorded.[/]")
        return
    records = load_cache_events(log_path, limit=limit)
    if not records:
        console.print("[dim]No cache events found.[/]")
        return
    if json_output:
        for record in records:
            console.print(json.dumps(record), soft_wrap=True, markup=False, highlight=False)
        return
    table = Table("Timestamp", "Event", "URL", "Detail", title="Cache events")
    for record in records:
        table.add_row(*(_cell(record.get(key)) for key in ("timestamp", "event", "url", "detail")))
    console.print(table)


def _cell(value: Any) -> str:
    return "—" if value in (None, "") else str(value)


if __name__ == "__main__":
    cli()
