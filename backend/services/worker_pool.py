"""Bounded-concurrency gate for clone+analyze work.

Each permit stands for one clone/analyzer subprocess pair, which is heavy on
memory and bandwidth. Two pools exist: a small one for interactive scans and
one for index runs.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from services.errors import PoolSaturated

logger = logging.getLogger(__name__)


class WorkerPool:
    """An asyncio.Semaphore with scoped acquisition and a shutdown switch."""

    def __init__(self, name: str, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"Pool capacity must be >= 1, got {capacity}")
        self.name = name
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._closed = False
        self.in_use = 0
        self.peak_in_use = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Reject all future acquisitions. Permits already handed out stay valid."""
        self._closed = True

    async def _acquire(self, timeout: float | None) -> None:
        if self._closed:
            raise PoolSaturated(self.name, "pool is shut down")
        if timeout is None:
            await self._semaphore.acquire()
        else:
            await self._acquire_within(timeout)
        if self._closed:
            self._semaphore.release()
            raise PoolSaturated(self.name, "pool is shut down")

    async def _acquire_within(self, timeout: float) -> None:
        # A permit granted just as the deadline passes, or as the caller is
        # cancelled, must be kept or handed back, never lost.
        acquire = asyncio.ensure_future(self._semaphore.acquire())
        try:
            await asyncio.wait({acquire}, timeout=timeout)
        except asyncio.CancelledError:
            if acquire.done() and not acquire.cancelled():
                self._semaphore.release()
            else:
                acquire.cancel()
            raise
        if not acquire.done():
            acquire.cancel()
            raise PoolSaturated(self.name, f"no permit within {timeout:g}s")

    @asynccontextmanager
    async def permit(self, timeout: float | None = None) -> AsyncIterator[None]:
        """
        Hold one permit for the duration of the ``async with`` block.

        Waits while the pool is saturated. The permit is released on every
        exit path, including exceptions and cancellation.

        Args:
            timeout: Optional seconds to wait for a permit before giving up.

        Raises:
            PoolSaturated: If the pool is closed or the wait timed out.
        """
        await self._acquire(timeout)
        self.in_use += 1
        self.peak_in_use = max(self.peak_in_use, self.in_use)
        logger.debug("%s pool: permit acquired (%d/%d)", self.name, self.in_use, self.capacity)
        try:
            yield
        finally:
            self.in_use -= 1
            self._semaphore.release()
            logger.debug("%s pool: permit released (%d/%d)", self.name, self.in_use, self.capacity)
