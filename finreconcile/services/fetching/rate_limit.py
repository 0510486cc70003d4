"""
Local rate-limit gate.

Sliding window per service type. Exceeding it is an expected condition:
the fetcher serves cached data instead of calling the upstream.
"""

import time
from collections import deque
from typing import Callable, Optional

from finreconcile.config import get_settings


class SlidingWindowRateLimiter:

    def __init__(
        self,
        window_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if window_seconds is None:
            window_seconds = get_settings().fetching.rate_limit_window_seconds
        self._window = window_seconds
        self._clock = clock
        self._calls: dict[str, deque[float]] = {}

    def try_acquire(self, key: str, limit: Optional[int]) -> bool:
        """
        Record one call for key if the window allows it.

        A limit of None means the key is not rate limited.
        """
        if limit is None:
            return True

        now = self._clock()
        calls = self._calls.setdefault(key, deque())
        while calls and calls[0] <= now - self._window:
            calls.popleft()

        if len(calls) >= limit:
            return False

        calls.append(now)
        return True