# Overview: Legacy single-blob key/value storage, also used as the degraded-mode fallback.

from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

# Keys shared with the external migration trigger.
LEGACY_DATA_KEY = "system-data"
MIGRATED_DATE_KEY = "migrated-date"
MIGRATED_HASH_KEY = "migrated-hash"
LEGACY_BACKUP_KEY = "backup-data"
LATEST_BACKUP_KEY = "backup-latest"
LAST_SAVE_KEY = "last-save"
FINAL_MIGRATION_DATE_KEY = "migration-final-date"
FINAL_BACKUP_KEY = "final-backup"


class FlatStorage:
    """
    String key/value store persisted as one JSON document.

    With path=None the items live in memory only (tests, ephemeral runs).
    Writes replace the file atomically.
    """

    def __init__(self, path: str | os.PathLike | None = None):
        self.path = Path(path) if path else None
        self._lock = threading.RLock()
        self._items: dict[str, str] = {}
        if self.path is not None and self.path.exists():
            with self.path.open("r", encoding="utf-8") as fh:
                raw = fh.read()
            self._items = json.loads(raw) if raw.strip() else {}

    def _flush(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".flat-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._items, fh)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value
            self._flush()

    def remove_item(self, key: str) -> None:
        with self._lock:
            if self._items.pop(key, None) is not None:
                self._flush()

    def get_json(self, key: str) -> Any:
        raw = self.get_item(key)
        if raw is None:
            return None
        return json.loads(raw)

    def set_json(self, key: str, value: Any) -> None:
        self.set_item(key, json.dumps(value))

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items)
