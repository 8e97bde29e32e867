"""
In-memory TTL cache for issue fetches.

One instance is created by the application (see main.py, app.state.issue_cache)
and handed to IssueSource by the route dependency. Nothing in the engine
imports it, so every heatmap computation stays a pure function of its inputs.

Backed by cachetools.TTLCache: expired entries are purged on every write and
the entry count is bounded by ``max_entries`` (least recently used entries go
first). A TTL of zero or less disables caching entirely.

Only touched from the event loop (IssueSource.fetch_issues), so no lock.
"""

import logging
import time
from typing import Any, Callable, Optional

from cachetools import TTLCache as _TTLStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 128


class TTLCache:
    """Key/value store whose entries expire after ``ttl_seconds``."""

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._store = _TTLStore(maxsize=max_entries, ttl=max(ttl_seconds, 0), timer=clock)

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0 and self.max_entries > 0

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value for key, or None if missing/expired."""
        if not self.enabled:
            return None
        value = self._store.get(key)
        if value is not None:
            logger.debug("Issue cache hit for %s", key)
        return value

    def set(self, key: str, value: Any) -> None:
        if not self.enabled:
            return
        self._store[key] = value

    def clear(self) -> None:
        self._store.clear()
        logger.info("Issue cache cleared")

    def stats(self) -> dict:
        self._store.expire()
        return {
            "entries": len(self._store),
            "max_entries": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
        }
