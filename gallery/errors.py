"""Exception types raised inside the gallery and image cache layers."""

from __future__ import annotations


class GalleryError(Exception):
    """Base class for gallery failures."""


class PersistenceReadError(GalleryError):
    """Persisted cache index is unreadable or corrupt."""


class PersistenceWriteError(GalleryError):
    """Persisted cache index could not be written or removed."""


class DownloadError(GalleryError):
    """Remote image could not be fetched into the cache directory."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"download of {url} failed: {reason}")
        self.url = url
        self.reason = reason


class DeletionError(GalleryError):
    """A cached file could not be removed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"could not delete {path}: {reason}")
        self.path = path
        self.reason = reason


class ListingError(GalleryError):
    """The remote listing API returned an error or an unusable payload."""
