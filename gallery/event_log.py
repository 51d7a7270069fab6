"""Helpers to append cache failure events to an ops log."""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)


def append_cache_event(
    log_path: Path | None,
    *,
    event: str,
    url: str | None = None,
    detail: str | None = None,
    extra: dict[str, Any] | None = None,
) -> None:
    """Append one JSON line describing a cache failure.

    No-op when ``log_path`` is ``None``. A failure to write the log is itself
    only logged; ops logging must never break a cache operation.
    """

    if log_path is None:
        return

    record: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event": event,
    }
    if url is not None:
        record["url"] = url
    if detail:
        record["detail"] = detail
    if extra:
        record.update(extra)

    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record))
            handle.write("\n")
    except OSError as exc:
        LOGGER.warning("Could not append cache event to %s: %s", log_path, exc)


def load_cache_events(log_path: Path, limit: int | None = None) -> list[dict[str, Any]]:
    """Read back the most recent events, skipping unparsable lines."""

    if not log_path.exists():
        return []
    records: list[dict[str, Any]] = []
    with log_path.open("r", encoding="utf-8") as handle:
        for line in handle:
            line = line.strip()
            if not line:
                continue
            try:
                records.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    if limit is not None and limit > 0:
        return records[-limit:]
    return records
