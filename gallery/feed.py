"""Infinite-scroll pagination over the image listing."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from gallery.errors import ListingError
from gallery.image_cache import ImageCacheManager
from gallery.listing_client import fetch_image_page
from gallery.schemas import ImageRecord
from gallery.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

PageFetcher = Callable[..., Awaitable[list[ImageRecord]]]


class GalleryFeed:
    """Accumulates listing pages as the viewer scrolls.

    ``load_more`` is a no-op while a previous load is still running, so a burst
    of end-of-list events fetches each page once.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        cache: ImageCacheManager | None = None,
        fetcher: PageFetcher | None = None,
        page_size: int | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._cache = cache
        self._fetcher = fetcher or fetch_image_page
        self.page_size = page_size or self._settings.listing.page_size
        self.images: list[ImageRecord] = []
        self.next_page = 1
        self.loading = False
        self._prefetches: set[asyncio.Task[object]] = set()

    async def load_more(self) -> list[ImageRecord]:
        """Fetch the next page; returns the newly appended records."""

        if self.loading:
            return []
        self.loading = True
        try:
            page = await self._fetcher(
                page=self.next_page,
                limit=self.page_size,
                settings=self._settings,
                client=self._client,
            )
        except ListingError as exc:
            LOGGER.error("Error fetching images (page %s): %s", self.next_page, exc)
            return []
        finally:
            self.loading = False

        self.images.extend(page)
        self.next_page += 1
        if self._cache is not None and page:
            task = asyncio.create_task(self._cache.prefetch(record.download_url for record in page))
            self._prefetches.add(task)
            task.add_done_callback(self._prefetches.discard)
        return page

    async def wait_for_prefetch(self) -> None:
        """Block until background cache warming for loaded pages finishes."""

        if self._prefetches:
            await asyncio.gather(*list(self._prefetches))

    def find(self, image_id: str) -> ImageRecord | None:
        for record in self.images:
            if record.id == image_id:
                return record
        return None
