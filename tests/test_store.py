from __future__ import annotations

from pathlib import Path

from gallery.store import StorageConfig, Store, build_store


def test_store_round_trips_and_overwrites(tmp_path: Path) -> None:
    store = Store(StorageConfig(db_path=tmp_path / "nested" / "gallery.db"))

    assert store.get("favorites") is None
    store.set("favorites", '["1"]')
    store.set("favorites", '["1", "2"]')

    assert store.get("favorites") == '["1", "2"]'
    assert store.keys() == ["favorites"]
    assert (tmp_path / "nested" / "gallery.db").exists()


def test_store_remove_reports_presence(tmp_path: Path) -> None:
    store = Store(StorageConfig(db_path=tmp_path / "gallery.db"))
    store.set("IMAGE_CACHE_MAP", "{}")

    assert store.remove("IMAGE_CACHE_MAP") is True
    assert store.remove("IMAGE_CACHE_MAP") is False
    assert store.get("IMAGE_CACHE_MAP") is None


def test_store_values_survive_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "gallery.db"
    first = build_store(db_path)
    first.set("key", "value")
    first.close()

    reopened = build_store(db_path)

    assert reopened.get("key") == "value"
