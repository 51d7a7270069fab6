"""Pydantic DTOs shared by the listing client, cache, and CLI."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class ImageRecord(BaseModel):
    """Single row from the paged image listing."""

    id: str = Field(description="Listing identifier, also used for favorites")
    author: str = Field(default="", description="Photographer credit")
    download_url: str = Field(description="Direct image URL; the cache key space")
    width: int | None = Field(default=None, ge=1)
    height: int | None = Field(default=None, ge=1)
    url: str | None = Field(default=None, description="Source page for the image")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if isinstance(value, int):
            return str(value)
        return value


class CacheEntry(BaseModel):
    """Where a remote image lives on disk and when it was fetched."""

    source_url: str
    local_path: str
    fetched_at: datetime

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy(cls, data: Any) -> Any:
        # Older index blobs stored {"uri": ..., "timestamp": <epoch ms>}.
        if isinstance(data, dict) and "uri" in data and "local_path" not in data:
            upgraded = dict(data)
            upgraded["local_path"] = upgraded.pop("uri")
            timestamp = upgraded.pop("timestamp", None)
            if isinstance(timestamp, (int, float)):
                upgraded["fetched_at"] = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc)
            return upgraded
        return data

    @field_validator("fetched_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class CacheStats(BaseModel):
    """Summary of the cache index and the files it references."""

    entries: int = Field(ge=0)
    fresh: int = Field(ge=0)
    stale: int = Field(ge=0, description="Entries past the TTL whose file still exists")
    missing: int = Field(ge=0, description="Entries whose file is gone from disk")
    total_bytes: int = Field(ge=0)
    oldest: datetime | None = None
    newest: datetime | None = None


class PrefetchResult(BaseModel):
    """Outcome counts for warming the cache with a batch of URLs."""

    hits: int = 0
    downloaded: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.hits + self.downloaded + self.failed
