from __future__ import annotations

import threading
import time


class DatabaseMonitor:
    """In-process counters for queries, errors, cache efficiency and named events."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.queries = 0
            self.errors = 0
            self.cache_hits = 0
            self.cache_misses = 0
            self.events: dict[str, int] = {}
            self.started_at = self._clock()

    def log_query(self) -> None:
        with self._lock:
            self.queries += 1

    def log_error(self, event_type: str) -> None:
        with self._lock:
            self.errors += 1
            self.events[event_type] = self.events.get(event_type, 0) + 1

    def log_event(self, event_type: str) -> None:
        with self._lock:
            self.events[event_type] = self.events.get(event_type, 0) + 1

    def log_cache_hit(self) -> None:
        with self._lock:
            self.cache_hits += 1

    def log_cache_miss(self) -> None:
        with self._lock:
            self.cache_misses += 1

    def get_metrics(self) -> dict:
        with self._lock:
            lookups = self.cache_hits + self.cache_misses
            hit_rate = (self.cache_hits / lookups * 100) if lookups else 0.0
            error_rate = (self.errors / self.queries * 100) if self.queries else 0.0
            uptime_hours = (self._clock() - self.started_at) / 3600
            return {
                "queries": self.queries,
                "errors": self.errors,
                "cache_hits": self.cache_hits,
                "cache_misses": self.cache_misses,
                "cache_hit_rate": round(hit_rate, 2),
                "error_rate": round(error_rate, 2),
                "uptime_hours": round(uptime_hours, 2),
                "events": dict(self.events),
            }
