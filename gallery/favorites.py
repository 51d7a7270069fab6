"""Favorite image ids persisted in the key-value store."""

from __future__ import annotations

import json
import logging

from gallery.schemas import ImageRecord
from gallery.store import KeyValueStore

LOGGER = logging.getLogger(__name__)

FAVORITES_KEY = "favorites"
PLACEHOLDER_URL_TEMPLATE = "https://picsum.photos/id/{id}/300/300"


class Favorites:
    """Ordered set of favorite image ids, written through on every toggle."""

    def __init__(self, store: KeyValueStore, *, key: str = FAVORITES_KEY) -> None:
        self._store = store
        self.key = key
        self._ids: list[str] = []

    def load(self) -> list[str]:
        try:
            raw = self._store.get(self.key)
        except Exception as exc:
            LOGGER.error("Error loading favorites: %s", exc)
            raw = None
        if raw is None:
            self._ids = []
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            LOGGER.error("Error loading favorites: %s", exc)
            data = []
        if not isinstance(data, list):
            LOGGER.error("Error loading favorites: expected a list, got %s", type(data).__name__)
            data = []
        self._ids = list(dict.fromkeys(str(item) for item in data))
        return self.ids()

    def ids(self) -> list[str]:
        return list(self._ids)

    def is_favorite(self, image_id: str) -> bool:
        return image_id in self._ids

    def toggle(self, image_id: str) -> bool:
        """Flip ``image_id``; returns ``True`` when it is now a favorite."""

        if image_id in self._ids:
            self._ids = [item for item in self._ids if item != image_id]
            added = False
        else:
            self._ids = [*self._ids, image_id]
            added = True
        self._save()
        return added

    def remove(self, image_id: str) -> bool:
        if image_id not in self._ids:
            return False
        self.toggle(image_id)
        return True

    def placeholder_records(self) -> list[ImageRecord]:
        """Rebuild display records from stored ids alone.

        Author and original URL are not persisted with favorites, so records
        carry an empty author and a fixed-size picsum URL.
        """

        return [
            ImageRecord(id=image_id, author="", download_url=PLACEHOLDER_URL_TEMPLATE.format(id=image_id))
            for image_id in self._ids
        ]

    def _save(self) -> None:
        self._store.set(self.key, json.dumps(self._ids))
