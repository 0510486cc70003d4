"""
Snapshot Cache

DESIGN DECISION: The cache is an explicit component instance injected
into the fetcher, never a module-level map. This keeps tests isolated
and lets several tenants run side by side.

Entry lifecycle:
1. Created/refreshed on every successful fetch (TTL, default 5 minutes)
2. After expiry it is no longer served directly, but stays available
   for stale fallback until the stale retention window passes
3. Past the retention window it is evicted lazily on the next lookup
4. stats() evicts every expired entry as a side effect

Entries hold a private deep copy of the snapshot; readers get their
own copy too, so mutating a returned snapshot never alters the cache.
"""

import time
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from finreconcile.config import get_settings
from finreconcile.models.snapshot import PartialSnapshot, utc_now


class CacheEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: PartialSnapshot
    fetched_at: datetime
    stored_at: float
    expires_at: float


class CacheStats(BaseModel):
    total_entries: int
    active_entries: int


class SnapshotCache:
    """
    At most one entry per (service_type, integration_id) key.

    Not thread-safe: it is meant to be used from a single event loop,
    where each method runs without interleaving.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        stale_retention_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings().fetching
        self._ttl = settings.cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._stale_retention = (
            settings.stale_retention_seconds
            if stale_retention_seconds is None
            else stale_retention_seconds
        )
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Return the entry for key, expired or not.

        Entries past the stale retention window are evicted here.
        """
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at + self._stale_retention:
            del self._entries[key]
            return None
        return entry

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self._clock() < entry.expires_at

    def put(self, key: str, data: PartialSnapshot) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            data=data.model_copy(deep=True),
            fetched_at=utc_now(),
            stored_at=now,
            expires_at=now + self._ttl,
        )
        self._entries[key] = entry
        return entry

    def invalidate(self, prefix: str) -> int:
        """Remove every entry whose key starts with prefix."""
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self, integration_id: Optional[str] = None) -> int:
        """Remove all entries, or every entry of one integration."""
        if integration_id is None:
            removed = len(self._entries)
            self._entries.clear()
            return removed
        suffix = f"-{integration_id}"
        doomed = [key for key in self._entries if key.endswith(suffix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def stats(self) -> CacheStats:
        """
        Count entries, evicting expired ones.

        total_entries is counted before eviction.
        """
        now = self._clock()
        total = len(self._entries)
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return CacheStats(total_entries=total, active_entries=total - len(expired))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
