"""Fetch layer: cache, rate-limit gate and the cached fetcher."""

from finreconcile.services.fetching.cache import CacheEntry, CacheStats, SnapshotCache
from finreconcile.services.fetching.fetcher import CachedFetcher, cache_key_prefix
from finreconcile.services.fetching.rate_limit import SlidingWindowRateLimiter

__all__ = [
    "CacheEntry",
    "CacheStats",
    "CachedFetcher",
    "SlidingWindowRateLimiter",
    "SnapshotCache",
    "cache_key_prefix",
]
