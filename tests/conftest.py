from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

from gallery.settings import CacheSettings, ListingSettings, LoggingSettings, Settings, StorageSettings


def build_test_settings(
    base_url: str = "https://picsum.example",
    page_size: int = 30,
    *,
    root: Path = Path(".cache"),
    event_log_path: Path | None = None,
) -> Settings:
    return Settings(
        env_path=".env",
        listing=ListingSettings(base_url=base_url, page_size=page_size, timeout_seconds=5.0),
        cache=CacheSettings(
            cache_dir=root / "images",
            ttl_days=7.0,
            download_timeout_seconds=30.0,
            prefetch_concurrency=4,
        ),
        storage=StorageSettings(db_path=root / "gallery.db"),
        logging=LoggingSettings(level="INFO", event_log_path=event_log_path),
    )


@pytest.fixture()
def make_settings() -> Callable[..., Settings]:
    return build_test_settings
