# =============================================================================
# shoppe_core/offline/staleness.py
# Staleness Policy for cached partitions
# =============================================================================
"""
A partition needs a sync when it has never been synced, or when its last
successful sync is older than the freshness window. The window is one value
for every partition.
"""

from __future__ import annotations
import time
from datetime import timedelta
from typing import TYPE_CHECKING, Callable, Optional

from shoppe_core.config.settings import DEFAULT_FRESHNESS_WINDOW
from shoppe_core.errors import ConfigurationError

if TYPE_CHECKING:
    from shoppe_core.offline.local_database import EntityCacheStore


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def is_stale(last_synced_at_ms: Optional[int], now: int, window_ms: int) -> bool:
    """Pure staleness rule: never synced, or older than the window."""
    if last_synced_at_ms is None:
        return True
    return (now - last_synced_at_ms) > window_ms


class StalenessPolicy:
    """
    Decides whether a partition should be refreshed.

    Reads sync timestamps from the store's in-memory index, so checks never
    touch the disk or the network.
    """

    def __init__(
        self,
        store: EntityCacheStore,
        freshness_window: timedelta = DEFAULT_FRESHNESS_WINDOW,
        clock: Optional[Callable[[], int]] = None,
    ):
        if freshness_window <= timedelta(0):
            raise ConfigurationError(
                "Freshness window must be positive",
                config_key="freshness_window",
            )
        self._store = store
        self.freshness_window = freshness_window
        self._clock = clock or now_ms

    @property
    def window_ms(self) -> int:
        return int(self.freshness_window.total_seconds() * 1000)

    def needs_sync(self, partition_key: str) -> bool:
        return is_stale(
            self._store.last_synced_at(partition_key),
            self._clock(),
            self.window_ms,
        )

    def age_ms(self, partition_key: str) -> Optional[int]:
        """Milliseconds since the last successful sync, None if never synced."""
        last = self._store.last_synced_at(partition_key)
        if last is None:
            return None
        return self._clock() - last
