"""Persistence layer: a string-keyed store backed by SQLite via sqlmodel."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from sqlmodel import Field, Session, SQLModel, create_engine, select

from gallery.settings import get_settings


class KeyValueStore(Protocol):
    """Minimal interface the cache index and favorites persist through."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> bool: ...


class KeyValueRecord(SQLModel, table=True):
    """One persisted key and its serialized value."""

    __tablename__ = "kv_entries"  # type: ignore[assignment]

    key: str = Field(primary_key=True)
    value: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class StorageConfig:
    db_path: Path


class Store:
    """SQLite-backed key-value store.

    Each ``set`` replaces the whole value for its key inside a single
    transaction, so readers never observe a partially written blob.
    """

    def __init__(self, config: StorageConfig) -> None:
        self.config = config
        self.config.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_engine(
            f"sqlite:///{self.config.db_path}",
            connect_args={"check_same_thread": False},
        )
        SQLModel.metadata.create_all(self._engine)

    def get(self, key: str) -> str | None:
        with Session(self._engine) as session:
            record = session.get(KeyValueRecord, key)
            return record.value if record else None

    def set(self, key: str, value: str) -> None:
        with Session(self._engine) as session:
            record = session.get(KeyValueRecord, key)
            if record is None:
                record = KeyValueRecord(key=key, value=value)
            else:
                record.value = value
                record.updated_at = datetime.now(timezone.utc)
            session.add(record)
            session.commit()

    def remove(self, key: str) -> bool:
        """Delete ``key``; returns ``False`` when it was not present."""

        with Session(self._engine) as session:
            record = session.get(KeyValueRecord, key)
            if record is None:
                return False
            session.delete(record)
            session.commit()
            return True

    def keys(self) -> list[str]:
        with Session(self._engine) as session:
            return list(session.exec(select(KeyValueRecord.key)).all())

    def close(self) -> None:
        self._engine.dispose()


def build_store(db_path: Path | None = None) -> Store:
    """Construct a ``Store`` using configured storage paths."""

    path = db_path or get_settings().storage.db_path
    return Store(StorageConfig(db_path=path))
