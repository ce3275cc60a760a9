"""
Ephemeral in-memory caches and rate windows.

Nothing here is persisted. Both classes take an injectable clock
(seconds, monotonic) so expiry can be tested without sleeping.
"""

import time
from collections import OrderedDict, deque
from typing import Callable, Generic, Hashable, TypeVar


K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_MAX_ENTRIES = 500


class TTLCache(Generic[K, V]):
    """
    Size-bounded cache whose entries expire after a fixed time-to-live.
    
    When full, the oldest inserted entry is evicted.
    
    Example:
        cache: TTLCache[str, dict] = TTLCache(ttl_seconds=3600)
        cache.set(url, links)
        links = cache.get(url)  # None once expired
    """
    
    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[K, tuple[V, float]]" = OrderedDict()
    
    def get(self, key: K) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value
    
    def set(self, key: K, value: V) -> None:
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = (value, self._clock() + self._ttl)
    
    def __len__(self) -> int:
        return len(self._entries)


class SlidingWindowLimiter:
    """
    Non-blocking request budget: at most max_requests per window_seconds.
    
    try_acquire() never waits. It either records the request and returns
    True, or returns False when the budget for the current window is spent.
    """
    
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock
        self._timestamps: deque[float] = deque()
    
    def try_acquire(self) -> bool:
        now = self._clock()
        while self._timestamps and now - self._timestamps[0] >= self._window:
            self._timestamps.popleft()
        if len(self._timestamps) >= self._max_requests:
            return False
        self._timestamps.append(now)
        return True
    
    @property
    def remaining(self) -> int:
        now = self._clock()
        active = sum(1 for ts in self._timestamps if now - ts < self._window)
        return max(0, self._max_requests - active)
