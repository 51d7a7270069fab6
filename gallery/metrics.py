"""Prometheus instruments for the image cache."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

CACHE_HITS = Counter(
    "gallery_image_cache_hits_total",
    "Resolve calls answered from a fresh local copy",
)
CACHE_MISSES = Counter(
    "gallery_image_cache_misses_total",
    "Resolve calls that required a download",
    ["reason"],
)
DOWNLOAD_FAILURES = Counter(
    "gallery_image_cache_download_failures_total",
    "Downloads that fell back to the remote URL",
)
PERSISTENCE_FAILURES = Counter(
    "gallery_image_cache_persistence_failures_total",
    "Cache index reads or writes that failed",
    ["operation"],
)
DOWNLOAD_SECONDS = Histogram(
    "gallery_image_cache_download_seconds",
    "Wall time spent downloading one image",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
