"""Configuration helpers bound to python-decouple."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from decouple import Config as DecoupleConfig, RepositoryEmpty, RepositoryEnv

DEFAULT_PICSUM_BASE_URL = "https://picsum.photos"
DEFAULT_PAGE_SIZE = 30
DEFAULT_CACHE_TTL_DAYS = 7.0
DEFAULT_DOWNLOAD_TIMEOUT_SECONDS = 30.0


def load_config(env_path: str = ".env") -> DecoupleConfig:
    """Return a decouple config object anchored to the repository .env file.

    Falls back to the process environment alone when the file is missing.
    """

    if Path(env_path).exists():
        return DecoupleConfig(RepositoryEnv(env_path))
    return DecoupleConfig(RepositoryEmpty())


@dataclass(slots=True)
class ListingSettings:
    """Remote image-listing API endpoint and paging defaults."""

    base_url: str
    page_size: int
    timeout_seconds: float


@dataclass(slots=True)
class CacheSettings:
    """Image cache directory, freshness window, and download limits."""

    cache_dir: Path
    ttl_days: float
    download_timeout_seconds: float
    prefetch_concurrency: int


@dataclass(slots=True)
class StorageSettings:
    """Location of the SQLite key-value store."""

    db_path: Path


@dataclass(slots=True)
class LoggingSettings:
    level: str
    event_log_path: Path | None


@dataclass(slots=True)
class Settings:
    """Top-level settings bundle consumed by the cache, feed, and CLI."""

    env_path: str
    listing: ListingSettings
    cache: CacheSettings
    storage: StorageSettings
    logging: LoggingSettings


def build_settings(env_path: str = ".env") -> Settings:
    config = load_config(env_path)

    listing = ListingSettings(
        base_url=config("PICSUM_BASE_URL", default=DEFAULT_PICSUM_BASE_URL),
        page_size=config("GALLERY_PAGE_SIZE", default=DEFAULT_PAGE_SIZE, cast=int),
        timeout_seconds=config("LISTING_TIMEOUT_SECONDS", default=15.0, cast=float),
    )
    cache = CacheSettings(
        cache_dir=Path(config("IMAGE_CACHE_DIR", default=".cache/images")),
        ttl_days=config("IMAGE_CACHE_TTL_DAYS", default=DEFAULT_CACHE_TTL_DAYS, cast=float),
        download_timeout_seconds=config(
            "DOWNLOAD_TIMEOUT_SECONDS", default=DEFAULT_DOWNLOAD_TIMEOUT_SECONDS, cast=float
        ),
        prefetch_concurrency=max(1, config("PREFETCH_CONCURRENCY", default=4, cast=int)),
    )
    storage = StorageSettings(db_path=Path(config("GALLERY_DB_PATH", default=".cache/gallery.db")))
    event_log = config("CACHE_EVENT_LOG_PATH", default="")
    logging_settings = LoggingSettings(
        level=config("LOG_LEVEL", default="INFO").upper(),
        event_log_path=Path(event_log) if event_log else None,
    )
    return Settings(
        env_path=env_path,
        listing=listing,
        cache=cache,
        storage=storage,
        logging=logging_settings,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings, reading .env/environment once."""

    return build_settings()

