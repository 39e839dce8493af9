"""
MetaStore Class - Site updates, events and items

Each category is a JSON array in the data directory, newest entry first.
"""

import os
import threading
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List

from guildsite.errors import StorageError
from guildsite.models.data_models import MetaItem
from guildsite.utils.helpers import now_ms, parse_ts, read_json, write_json_atomic
from guildsite.utils.logger import get_logger

log = get_logger("services.meta")

CATEGORIES = ("updates", "events", "items")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class MetaStore:
    def __init__(self, data_dir: str):
        self.data_dir = data_dir
        self._lock = threading.Lock()

    def path(self, category: str) -> str:
        if category not in CATEGORIES:
            raise KeyError(category)
        return os.path.join(self.data_dir, f"{category}.json")

    def list(self, category: str) -> List[Dict[str, Any]]:
        """Entries newest first; [] when the file is missing or unreadable"""
        try:
            entries = self._read(category)
        except StorageError as e:
            log.warning("Meta list %s unreadable: %s", category, e)
            return []
        # hand-edited files may be out of order
        return sorted(entries, key=lambda d: parse_ts(d.get("date")) or _EPOCH, reverse=True)

    def add(self, category: str, title: str, description: str) -> MetaItem:
        """Prepend an entry; the read-modify-write holds the store lock."""
        with self._lock:
            return self._add(category, title, description)

    def _add(self, category: str, title: str, description: str) -> MetaItem:
        entries = self._read(category)
        item = MetaItem(
            id=_next_id(entries),
            title=title,
            description=description,
            date=datetime.now(timezone.utc).isoformat(),
        )
        entries.insert(0, asdict(item))
        try:
            write_json_atomic(self.path(category), entries)
        except OSError as e:
            raise StorageError(f"{category}: {e}") from e
        log.info("Added %s entry %s", category, item.id)
        return item

    def _read(self, category: str) -> List[Dict[str, Any]]:
        try:
            raw = read_json(self.path(category))
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            raise StorageError(f"{category}: {e}") from e
        if not isinstance(raw, list):
            raise StorageError(f"{category}: expected a JSON array")
        return [d for d in raw if isinstance(d, dict)]


def _next_id(entries: List[Dict[str, Any]]) -> int:
    """Millisecond id, bumped past the largest existing id on collision"""
    taken = [e["id"] for e in entries if isinstance(e.get("id"), int)]
    candidate = now_ms()
    if taken and candidate <= max(taken):
        candidate = max(taken) + 1
    return candidate
