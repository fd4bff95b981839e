"""Tests for the bounded-concurrency worker pool.

These tests verify that:
1. No more than `capacity` holders are ever inside the pool at once
2. Permits are released on errors and on cancellation
3. A closed pool, or an acquire timeout, surfaces as PoolSaturated
"""

import asyncio

import pytest

from services.errors import PoolSaturated
from services.worker_pool import WorkerPool


def test_capacity_must_be_positive():
    with pytest.raises(ValueError, match="capacity"):
        WorkerPool("bad", 0)


@pytest.mark.parametrize("capacity, units", [(1, 5), (2, 9), (3, 20)])
def test_pool_never_exceeds_capacity(capacity, units):
    """Scheduling N > k units keeps at most k inside the pool."""

    async def scenario():
        pool = WorkerPool("test", capacity)
        inside = 0
        observed_max = 0

        async def unit():
            nonlocal inside, observed_max
            async with pool.permit():
                inside += 1
                observed_max = max(observed_max, inside)
                await asyncio.sleep(0.01)
                inside -= 1

        await asyncio.gather(*(unit() for _ in range(units)))
        return pool, observed_max

    pool, observed_max = asyncio.run(scenario())
    assert observed_max == capacity
    assert pool.peak_in_use == capacity
    assert pool.in_use == 0


def test_permit_released_on_exception():
    async def scenario():
        pool = WorkerPool("test", 1)
        with pytest.raises(RuntimeError, match="boom"):
            async with pool.permit():
                raise RuntimeError("boom")
        # Capacity 1: this would hang if the permit leaked
        async with pool.permit(timeout=1):
            pass
        return pool

    pool = asyncio.run(scenario())
    assert pool.in_use == 0


def test_permit_released_on_cancellation():
    async def scenario():
        pool = WorkerPool("test", 1)
        entered = asyncio.Event()

        async def holder():
            async with pool.permit():
                entered.set()
                await asyncio.sleep(30)

        task = asyncio.create_task(holder())
        await entered.wait()
        assert pool.in_use == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        async with pool.permit(timeout=1):
            pass
        return pool

    pool = asyncio.run(scenario())
    assert pool.in_use == 0


def test_closed_pool_rejects_acquisition():
    async def scenario():
        pool = WorkerPool("user", 2)
        pool.close()
        async with pool.permit():
            pass

    with pytest.raises(PoolSaturated, match="shut down") as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.pool_name == "user"


def test_waiter_rejected_when_pool_closes_while_waiting():
    """A caller queued behind a full pool fails once the pool is shut down."""

    async def scenario():
        pool = WorkerPool("index", 1)
        release = asyncio.Event()

        async def holder():
            async with pool.permit():
                await release.wait()

        holder_task = asyncio.create_task(holder())
        await asyncio.sleep(0)

        async def waiter():
            async with pool.permit():
                return "got permit"

        waiter_task = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        pool.close()
        release.set()
        await holder_task
        return await asyncio.gather(waiter_task, return_exceptions=True)

    (result,) = asyncio.run(scenario())
    assert isinstance(result, PoolSaturated)


def test_acquire_timeout_raises_pool_saturated():
    async def scenario():
        pool = WorkerPool("user", 1)
        async with pool.permit():
            async with pool.permit(timeout=0.05):
                pass

    with pytest.raises(PoolSaturated, match="no permit within"):
        asyncio.run(scenario())


def test_timed_waiter_cancelled_after_grant_hands_permit_back():
    """A permit granted to a timed waiter that is then cancelled returns to the pool."""

    async def scenario():
        pool = WorkerPool("user", 1)
        release = asyncio.Event()

        async def holder():
            async with pool.permit():
                await release.wait()

        async def waiter():
            async with pool.permit(timeout=5):
                await asyncio.sleep(3600)

        holder_task = asyncio.create_task(holder())
        await asyncio.sleep(0)
        waiter_task = asyncio.create_task(waiter())
        await asyncio.sleep(0)

        release.set()
        await holder_task
        waiter_task.cancel()
        await asyncio.gather(waiter_task, return_exceptions=True)

        async with pool.permit(timeout=0.05):
            return pool.in_use

    assert asyncio.run(scenario()) == 1


def test_timed_out_waiter_leaves_capacity_intact():
    async def scenario():
        pool = WorkerPool("user", 1)
        async with pool.permit():
            with pytest.raises(PoolSaturated):
                async with pool.permit(timeout=0.01):
                    pass
        async with pool.permit(timeout=0.05):
            inside = pool.in_use
        return inside, pool.in_use

    assert asyncio.run(scenario()) == (1, 0)
