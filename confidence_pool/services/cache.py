"""
In-process TTL cache for leaderboard views.

Scoped to one running instance. Across instances staleness is bounded by the
unified document's own freshness check, not by this cache.
"""

import logging
import time
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 5 * 60


def leaderboard_cache_key(pool_id: str, week_number: Optional[int], view_type: str = "leaderboard") -> str:
    if week_number is None:
        return f"confidence_{pool_id}_season_{view_type}"
    return f"confidence_{pool_id}_w{week_number}_{view_type}"


class LeaderboardCache:
    """Simple in-memory cache with per-entry time-to-live."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, timer: Callable[[], float] = time.monotonic):
        self.ttl = ttl_seconds
        self._timer = timer
        self._store: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        ts, value = entry
        if self._timer() - ts >= self.ttl:
            del self._store[key]
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._store[key] = (self._timer(), value)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def invalidate_week(self, pool_id: str, week_number: int) -> int:
        """
        Drops every entry for the week plus every season entry.

        Season boards aggregate the week, so they go stale with it.
        """
        patterns = (f"confidence_{pool_id}_w{week_number}_", f"confidence_{pool_id}_season")
        doomed = [key for key in self._store if any(p in key for p in patterns)]
        for key in doomed:
            del self._store[key]
        logger.info(f"🗑️ Cache invalidated for week {week_number} ({len(doomed)} entries)")
        return len(doomed)

    def clear(self) -> None:
        self._store.clear()

    @property
    def size(self) -> int:
        return len(self._store)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
