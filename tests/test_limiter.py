"""Test the FIFO concurrency limiter"""

import asyncio

import pytest

from spot_audio.core.limiter import ConcurrencyLimiter


class TestConcurrencyLimiter:
    """Test admission order and bounds"""

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            ConcurrencyLimiter(0)

    @pytest.mark.asyncio
    async def test_never_exceeds_limit(self):
        limiter = ConcurrencyLimiter(2)
        active = 0
        peak = 0

        async def job():
            nonlocal active, peak
            async with limiter:
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(job() for _ in range(8)))

        assert peak == 2
        assert limiter.running == 0
        assert limiter.waiting == 0

    @pytest.mark.asyncio
    async def test_waiters_admitted_in_arrival_order(self):
        limiter = ConcurrencyLimiter(1)
        await limiter.acquire()
        order = []

        async def waiter(n):
            await limiter.acquire()
            order.append(n)
            limiter.release()

        tasks = [asyncio.create_task(waiter(n)) for n in range(5)]
        await asyncio.sleep(0)
        assert limiter.waiting == 5

        limiter.release()
        await asyncio.gather(*tasks)

        assert order == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_newcomer_cannot_overtake_waiter(self):
        limiter = ConcurrencyLimiter(1)
        await limiter.acquire()
        order = []

        async def worker(name):
            await limiter.acquire()
            order.append(name)
            limiter.release()

        first = asyncio.create_task(worker("queued"))
        await asyncio.sleep(0)
        limiter.release()
        late = asyncio.create_task(worker("late"))
        await asyncio.gather(first, late)

        assert order == ["queued", "late"]

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_queue(self):
        limiter = ConcurrencyLimiter(1)
        await limiter.acquire()

        task = asyncio.create_task(limiter.acquire())
        await asyncio.sleep(0)
        assert limiter.waiting == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert limiter.waiting == 0

        limiter.release()
        assert limiter.running == 0

    @pytest.mark.asyncio
    async def test_run_releases_on_error(self):
        limiter = ConcurrencyLimiter(1)

        async def failing():
            raise RuntimeError("ffmpeg crashed")

        with pytest.raises(RuntimeError):
            await limiter.run(failing)
        assert limiter.running == 0

        async def succeeding():
            return 42

        assert await limiter.run(succeeding) == 42
