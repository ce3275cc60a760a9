"""
FIFO concurrency limiter for subprocess-heavy work.

Bounds how many ffmpeg processes run at once, process-wide. Waiters are
admitted strictly in arrival order: release() hands the freed slot to
the oldest waiter rather than letting a newcomer overtake it.
"""

import asyncio
from collections import deque
from typing import Awaitable, Callable, TypeVar


T = TypeVar("T")


class ConcurrencyLimiter:
    """
    Counting semaphore with a FIFO admission queue.
    
    Attributes:
        limit: Maximum number of concurrent holders.
    
    Example:
        limiter = ConcurrencyLimiter(4)
        output = await limiter.run(lambda: run_ffmpeg(args))
    """
    
    def __init__(self, limit: int) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        self.limit = limit
        self._running = 0
        self._waiters: deque[asyncio.Future[None]] = deque()
    
    @property
    def running(self) -> int:
        return self._running
    
    @property
    def waiting(self) -> int:
        return len(self._waiters)
    
    async def acquire(self) -> None:
        """Proceed immediately if under the limit, otherwise queue in FIFO order."""
        if self._running < self.limit and not self._waiters:
            self._running += 1
            return
        
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            elif not waiter.cancelled():
                # Slot was already handed over; pass it on.
                self.release()
            raise
    
    def release(self) -> None:
        """Hand the slot to the next waiter, or free it."""
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # Slot transfers directly; _running is unchanged.
                waiter.set_result(None)
                return
        if self._running > 0:
            self._running -= 1
    
    async def run(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Run fn() while holding a slot."""
        await self.acquire()
        try:
            return await fn()
        finally:
            self.release()
    
    async def __aenter__(self) -> "ConcurrencyLimiter":
        await self.acquire()
        return self
    
    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
