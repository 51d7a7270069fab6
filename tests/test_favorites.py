from __future__ import annotations

import json
from pathlib import Path

import pytest

from gallery.favorites import FAVORITES_KEY, Favorites
from gallery.store import StorageConfig, Store


@pytest.fixture()
def store(tmp_path: Path) -> Store:
    return Store(StorageConfig(db_path=tmp_path / "gallery.db"))


def test_toggle_adds_then_removes_and_persists(store: Store) -> None:
    favorites = Favorites(store)
    favorites.load()

    assert favorites.toggle("10") is True
    assert favorites.toggle("20") is True
    assert favorites.toggle("10") is False

    assert favorites.ids() == ["20"]
    assert json.loads(store.get(FAVORITES_KEY) or "[]") == ["20"]

    reloaded = Favorites(store)
    assert reloaded.load() == ["20"]
    assert reloaded.is_favorite("20")
    assert not reloaded.is_favorite("10")


def test_load_tolerates_corrupt_payload(store: Store) -> None:
    store.set(FAVORITES_KEY, "{oops")

    favorites = Favorites(store)

    assert favorites.load() == []


def test_load_dedupes_and_stringifies_ids(store: Store) -> None:
    store.set(FAVORITES_KEY, json.dumps([1, "1", "2"]))

    assert Favorites(store).load() == ["1", "2"]


def test_remove_is_noop_for_unknown_id(store: Store) -> None:
    favorites = Favorites(store)
    favorites.load()
    favorites.toggle("5")

    assert favorites.remove("6") is False
    assert favorites.remove("5") is True
    assert favorites.ids() == []


def test_placeholder_records_rebuild_from_ids(store: Store) -> None:
    favorites = Favorites(store)
    favorites.load()
    favorites.toggle("42")

    [record] = favorites.placeholder_records()

    assert record.id == "42"
    assert record.author == ""
    assert record.download_url == "https://picsum.photos/id/42/300/300"


class _UnreadableStore:
    def get(self, key: str) -> str | None:
        raise OSError("disk unavailable")

    def set(self, key: str, value: str) -> None:
        pass

    def remove(self, key: str) -> bool:
        return False


def test_load_tolerates_store_read_failure() -> None:
    favorites = Favorites(_UnreadableStore())

    assert favorites.load() == []
    assert favorites.toggle("7") is True
