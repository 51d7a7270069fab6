"""Local image cache: maps remote image URLs to downloaded files on disk.

The cache is two cooperating pieces:

``CacheIndex``
    The URL -> ``CacheEntry`` mapping. Held in memory and persisted as one
    JSON blob under a fixed key in a ``KeyValueStore``. Every mutation writes
    the full snapshot; there are no incremental writes.

``ImageCacheManager``
    The entry point the gallery calls. ``resolve`` returns a local path for a
    URL, downloading it first when the index has no fresh copy. I/O failures
    never escape: a failed download hands back the remote URL, a failed index
    write is logged and the in-memory index stays authoritative.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import hashlib
import json
import logging
import os
from pathlib import Path
import re
import time
from typing import Callable, Iterable, Iterator
from urllib.parse import unquote, urlsplit
from uuid import uuid4

import httpx
from pydantic import ValidationError

from gallery import metrics
from gallery.errors import DeletionError, DownloadError, PersistenceReadError, PersistenceWriteError
from gallery.event_log import append_cache_event
from gallery.schemas import CacheEntry, CacheStats, PrefetchResult
from gallery.settings import Settings, get_settings
from gallery.store import KeyValueStore, build_store

LOGGER = logging.getLogger(__name__)

CACHE_KEY = "IMAGE_CACHE_MAP"
DEFAULT_TTL = timedelta(days=7)
_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_SEGMENT_LENGTH = 120

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_expired(entry: CacheEntry, now: datetime, ttl: timedelta) -> bool:
    return now - entry.fetched_at >= ttl


def _file_exists(path: str | Path) -> bool:
    try:
        return Path(path).is_file()
    except OSError:
        return False


def cache_filename(url: str, *, now: datetime | None = None) -> str:
    """Derive the on-disk filename for ``url``.

    The name ends with the URL's final path segment. URLs without a usable
    segment (``https://host/``) fall back to a millisecond timestamp. A short
    digest of the full URL is prepended so ``/id/10/300/300`` and
    ``/id/11/300/300`` do not share a file.
    """

    path = urlsplit(url).path
    segment = unquote(path.split("/")[-1]) if path else ""
    name = _UNSAFE_FILENAME_CHARS.sub("_", segment).strip("._")
    if not name:
        moment = now or _utcnow()
        name = str(int(moment.timestamp() * 1000))
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:12]
    return f"{digest}-{name[-_MAX_SEGMENT_LENGTH:]}"


class CacheIndex:
    """In-memory URL -> ``CacheEntry`` map persisted as a single JSON blob."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = CACHE_KEY,
        entries: dict[str, CacheEntry] | None = None,
    ) -> None:
        self._store = store
        self.key = key
        self.entries: dict[str, CacheEntry] = dict(entries or {})

    @classmethod
    def load(cls, store: KeyValueStore, *, key: str = CACHE_KEY) -> "CacheIndex":
        """Read the persisted index; a corrupt or unreadable blob yields an empty index."""

        try:
            entries = _decode_entries(store, key)
        except PersistenceReadError as exc:
            metrics.PERSISTENCE_FAILURES.labels(operation="read").inc()
            LOGGER.warning("Image cache index unreadable, starting cold: %s", exc)
            entries = {}
        return cls(store, key=key, entries=entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, url: object) -> bool:
        return url in self.entries

    def __iter__(self) -> Iterator[CacheEntry]:
        return iter(list(self.entries.values()))

    def get(self, url: str) -> CacheEntry | None:
        return self.entries.get(url)

    def put(self, entry: CacheEntry) -> CacheEntry:
        """Insert or overwrite ``entry``; ``fetched_at`` never moves backwards."""

        previous = self.entries.get(entry.source_url)
        if previous is not None and entry.fetched_at < previous.fetched_at:
            entry = entry.model_copy(update={"fetched_at": previous.fetched_at})
        self.entries[entry.source_url] = entry
        return entry

    def discard(self, url: str) -> CacheEntry | None:
        return self.entries.pop(url, None)

    def reset(self) -> None:
        self.entries = {}

    def snapshot(self) -> dict[str, CacheEntry]:
        return dict(self.entries)

    def save(self, snapshot: dict[str, CacheEntry] | None = None) -> None:
        """Write the full mapping under ``key`` in one store call."""

        entries = self.entries if snapshot is None else snapshot
        payload = json.dumps(
            {url: entry.model_dump(mode="json") for url, entry in entries.items()},
            separators=(",", ":"),
        )
        try:
            self._store.set(self.key, payload)
        except Exception as exc:
            raise PersistenceWriteError(f"saving image cache index failed: {exc}") from exc

    def remove(self) -> None:
        try:
            self._store.remove(self.key)
        except Exception as exc:
            raise PersistenceWriteError(f"removing image cache index failed: {exc}") from exc


def _decode_entries(store: KeyValueStore, key: str) -> dict[str, CacheEntry]:
    try:
        raw = store.get(key)
    except Exception as exc:
        raise PersistenceReadError(f"store read failed: {exc}") from exc
    if raw is None:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise PersistenceReadError(f"index is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise PersistenceReadError(f"index root must be an object, got {type(payload).__name__}")

    entries: dict[str, CacheEntry] = {}
    for url, item in payload.items():
        if not isinstance(item, dict):
            LOGGER.warning("Dropping malformed image cache entry for %s", url)
            continue
        try:
            entries[url] = CacheEntry.model_validate({**item, "source_url": url})
        except ValidationError as exc:
            LOGGER.warning("Dropping malformed image cache entry for %s: %s", url, exc)
    return entries


class ImageCacheManager:
    """Resolve remote image URLs to local files, downloading on a miss.

    Concurrent ``resolve`` calls for one URL share a single download. Index
    writes are serialized through one lock so snapshots never interleave.
    """

    def __init__(
        self,
        *,
        store: KeyValueStore,
        cache_dir: str | Path,
        ttl: timedelta = DEFAULT_TTL,
        client: httpx.AsyncClient | None = None,
        download_timeout: float = 30.0,
        prefetch_concurrency: int = 4,
        clock: Clock | None = None,
        event_log_path: Path | None = None,
    ) -> None:
        self._store = store
        self.cache_dir = Path(cache_dir).expanduser().resolve()
        self.ttl = ttl
        self.prefetch_concurrency = max(1, prefetch_concurrency)
        self._client = client
        self._owns_client = client is None
        self._timeout = httpx.Timeout(download_timeout)
        self._clock = clock or _utcnow
        self._event_log_path = event_log_path
        self._index: CacheIndex | None = None
        self._load_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()
        self._inflight: dict[str, asyncio.Task[str]] = {}

    async def __aenter__(self) -> "ImageCacheManager":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def index(self) -> CacheIndex:
        """Return the index, loading it from the store on first use."""

        if self._index is None:
            async with self._load_lock:
                if self._index is None:
                    self._index = await asyncio.to_thread(CacheIndex.load, self._store)
                    LOGGER.debug("Loaded image cache index with %d entries", len(self._index))
        return self._index

    async def lookup(self, url: str) -> CacheEntry | None:
        index = await self.index()
        return index.get(url)

    async def is_fresh(self, url: str) -> bool:
        index = await self.index()
        entry = index.get(url)
        if entry is None or is_expired(entry, self._clock(), self.ttl):
            return False
        return _file_exists(entry.local_path)

    async def resolve(self, url: str) -> str:
        """Return a local path for ``url``, or ``url`` itself if caching failed."""

        index = await self.index()
        entry = index.get(url)
        if entry is None:
            reason = "absent"
        elif is_expired(entry, self._clock(), self.ttl):
            reason = "expired"
        elif not _file_exists(entry.local_path):
            reason = "missing"
        else:
            metrics.CACHE_HITS.inc()
            return entry.local_path

        metrics.CACHE_MISSES.labels(reason=reason).inc()
        LOGGER.debug("Image cache miss (%s) for %s", reason, url)
        task = self._inflight.get(url)
        if task is None:
            task = asyncio.create_task(self._fetch(url))
            self._inflight[url] = task
        # Shielded so a caller that goes away does not abort a shared download.
        return await asyncio.shield(task)

    async def prefetch(self, urls: Iterable[str], *, concurrency: int | None = None) -> PrefetchResult:
        """Warm the cache for ``urls`` with at most ``concurrency`` downloads at once."""

        semaphore = asyncio.Semaphore(max(1, concurrency or self.prefetch_concurrency))
        result = PrefetchResult()

        async def _warm(url: str) -> None:
            async with semaphore:
                was_fresh = await self.is_fresh(url)
                resolved = await self.resolve(url)
            if was_fresh:
                result.hits += 1
            elif resolved == url:
                result.failed += 1
            else:
                result.downloaded += 1

        await asyncio.gather(*(_warm(url) for url in dict.fromkeys(urls)))
        return result

    async def clear(self) -> None:
        """Delete every cached file and drop the persisted index."""

        index = await self.index()
        while self._inflight:
            # asyncio.wait leaves the downloads running if clear itself is cancelled.
            await asyncio.wait(list(self._inflight.values()))
        async with self._write_lock:
            entries = index.snapshot()
            deleted = 0
            for url, entry in entries.items():
                try:
                    if self._delete_file(entry.local_path):
                        deleted += 1
                except DeletionError as exc:
                    LOGGER.warning("Skipping cached file for %s: %s", url, exc)
                    append_cache_event(self._event_log_path, event="delete_failed", url=url, detail=exc.reason)
            try:
                await asyncio.to_thread(index.remove)
            except PersistenceWriteError as exc:
                self._record_write_failure(exc, event="index_remove_failed")
            index.reset()
        LOGGER.info("Cleared image cache: %d entries, %d files deleted", len(entries), deleted)

    async def prune(self) -> int:
        """Drop expired entries and entries whose file vanished; return the count."""

        index = await self.index()
        now = self._clock()
        removed = 0
        async with self._write_lock:
            for url, entry in index.snapshot().items():
                present = _file_exists(entry.local_path)
                if present and not is_expired(entry, now, self.ttl):
                    continue
                if present:
                    try:
                        self._delete_file(entry.local_path)
                    except DeletionError as exc:
                        LOGGER.warning("Keeping expired entry for %s: %s", url, exc)
                        continue
                index.discard(url)
                removed += 1
            if removed:
                await self._save_locked(index)
        if removed:
            LOGGER.info("Pruned %d stale image cache entries", removed)
        return removed

    async def stats(self) -> CacheStats:
        index = await self.index()
        now = self._clock()
        fresh = stale = missing = total_bytes = 0
        for entry in index:
            try:
                size = Path(entry.local_path).stat().st_size
            except OSError:
                missing += 1
                continue
            total_bytes += size
            if is_expired(entry, now, self.ttl):
                stale += 1
            else:
                fresh += 1
        timestamps = [entry.fetched_at for entry in index]
        return CacheStats(
            entries=len(index),
            fresh=fresh,
            stale=stale,
            missing=missing,
            total_bytes=total_bytes,
            oldest=min(timestamps, default=None),
            newest=max(timestamps, default=None),
        )

    async def _fetch(self, url: str) -> str:
        try:
            index = await self.index()
            started = time.perf_counter()
            try:
                destination = self._destination(url)
                await self._download(url, destination)
            except DownloadError as exc:
                metrics.DOWNLOAD_FAILURES.inc()
                LOGGER.warning("Image cache falling back to remote URL: %s", exc)
                append_cache_event(self._event_log_path, event="download_failed", url=url, detail=exc.reason)
                return url
            metrics.DOWNLOAD_SECONDS.observe(time.perf_counter() - started)

            async with self._write_lock:
                previous = index.get(url)
                entry = index.put(CacheEntry(source_url=url, local_path=str(destination), fetched_at=self._clock()))
                await self._save_locked(index)
            if previous is not None and previous.local_path != entry.local_path:
                try:
                    self._delete_file(previous.local_path)
                except DeletionError as exc:
                    LOGGER.warning("Could not remove superseded file for %s: %s", url, exc)
            LOGGER.debug("Cached %s at %s", url, entry.local_path)
            return entry.local_path
        finally:
            self._inflight.pop(url, None)

    def _destination(self, url: str) -> Path:
        try:
            name = cache_filename(url, now=self._clock())
        except ValueError as exc:
            raise DownloadError(url, "invalid URL") from exc
        return self.cache_dir / name

    async def _download(self, url: str, destination: Path) -> None:
        client = self._http_client()
        partial = destination.with_name(f".{destination.name}.{uuid4().hex}.part")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with client.stream("GET", url, timeout=self._timeout) as response:
                if not response.is_success:
                    raise DownloadError(url, f"HTTP {response.status_code}")
                with partial.open("wb") as handle:
                    async for chunk in response.aiter_bytes():
                        handle.write(chunk)
            os.replace(partial, destination)
        except httpx.TimeoutException as exc:
            raise DownloadError(url, "timeout") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise DownloadError(url, f"{type(exc).__name__}: {exc}") from exc
        except OSError as exc:
            raise DownloadError(url, f"write failed: {exc}") from exc
        finally:
            partial.unlink(missing_ok=True)

    def _http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True, http2=True)
            self._owns_client = True
        return self._client

    async def _save_locked(self, index: CacheIndex) -> None:
        snapshot = index.snapshot()
        try:
            await asyncio.to_thread(index.save, snapshot)
        except PersistenceWriteError as exc:
            self._record_write_failure(exc, event="index_save_failed")

    def _record_write_failure(self, exc: PersistenceWriteError, *, event: str) -> None:
        metrics.PERSISTENCE_FAILURES.labels(operation="write").inc()
        LOGGER.error("Image cache index write failed, keeping in-memory state: %s", exc)
        append_cache_event(self._event_log_path, event=event, detail=str(exc))

    def _delete_file(self, path: str) -> bool:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise DeletionError(path, str(exc)) from exc
        return True


def build_cache_manager(
    *,
    settings: Settings | None = None,
    store: KeyValueStore | None = None,
    client: httpx.AsyncClient | None = None,
) -> ImageCacheManager:
    """Construct an ``ImageCacheManager`` from configured paths and limits."""

    cfg = settings or get_settings()
    return ImageCacheManager(
        store=store or build_store(cfg.storage.db_path),
        cache_dir=cfg.cache.cache_dir,
        ttl=timedelta(days=cfg.cache.ttl_days),
        client=client,
        download_timeout=cfg.cache.download_timeout_seconds,
        prefetch_concurrency=cfg.cache.prefetch_concurrency,
        event_log_path=cfg.logging.event_log_path,
    )
