# Overview: TTL + capacity bounded read cache in front of the collection store.

from __future__ import annotations

import threading
import time
from typing import Any, Callable

DEFAULT_TTL_SECONDS = 5 * 60
DEFAULT_MAX_SIZE = 100


class QueryCache:
    """
    Derived, disposable copies of collection reads.

    Entries are keyed by "<collection>:<operation signature>" so a write to a
    collection can drop every cached read for it with
    invalidate_pattern("<collection>:").

    Eviction is strict oldest-first by stored time; ties go to the entry that
    was inserted first.
    """

    def __init__(
        self,
        *,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
        monitor=None,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._monitor = monitor
        self._entries: dict[str, tuple[Any, float]] = {}
        self._lock = threading.RLock()

    def get_or_fetch(self, key: str, loader: Callable[[], Any], ttl: float | None = None) -> Any:
        ttl = self.default_ttl if ttl is None else ttl
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None and self._clock() - cached[1] < ttl:
                if self._monitor is not None:
                    self._monitor.log_cache_hit()
                return cached[0]

        if self._monitor is not None:
            self._monitor.log_cache_miss()

        # Loader errors propagate; the cache is a pass-through, not a failure boundary.
        value = loader()

        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                self._remove_oldest()
            self._entries[key] = (value, self._clock())
        return value

    def _remove_oldest(self) -> None:
        oldest_key = None
        oldest_time = None
        for key, (_, stored_at) in self._entries.items():
            if oldest_time is None or stored_at < oldest_time:
                oldest_key = key
                oldest_time = stored_at
        if oldest_key is not None:
            del self._entries[oldest_key]

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if pattern in key]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
