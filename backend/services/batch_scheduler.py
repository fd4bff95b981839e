"""Two-pass batch scheduling of repository scans.

Pass 1 runs every repository with normal deadlines. Pass 2 starts only after
pass 1 has completely finished and retries just the failures with doubled
deadlines. Anything that fails twice is dropped from the run.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from services.errors import PoolSaturated, ScanError
from services.repo_scanner import NORMAL_TIMEOUTS, ScanTimeouts
from services.worker_pool import WorkerPool

logger = logging.getLogger(__name__)

ScanFn = Callable[[str, ScanTimeouts], Awaitable[Any]]


class UnitState(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    SUCCEEDED = "succeeded"
    FAILED_PASS1 = "failed_pass1"
    RECOVERED = "recovered"
    PERMANENTLY_FAILED = "permanently_failed"


_TRANSITIONS = {
    (UnitState.NOT_ATTEMPTED, True): UnitState.SUCCEEDED,
    (UnitState.NOT_ATTEMPTED, False): UnitState.FAILED_PASS1,
    (UnitState.FAILED_PASS1, True): UnitState.RECOVERED,
    (UnitState.FAILED_PASS1, False): UnitState.PERMANENTLY_FAILED,
}


def next_state(state: UnitState, succeeded: bool) -> UnitState:
    """
    Retry policy for one unit.

    Raises:
        ValueError: If ``state`` is terminal (there is no third attempt).
    """
    try:
        return _TRANSITIONS[(state, succeeded)]
    except KeyError:
        raise ValueError(f"No further attempt allowed from state {state.value}") from None


@dataclass
class BatchOutcome:
    """Results of a two-pass run keyed by repository slug (unordered)."""

    results: dict[str, Any] = field(default_factory=dict)
    states: dict[str, UnitState] = field(default_factory=dict)

    def slugs_in(self, state: UnitState) -> list[str]:
        return [slug for slug, s in self.states.items() if s == state]

    @property
    def dropped(self) -> list[str]:
        return self.slugs_in(UnitState.PERMANENTLY_FAILED)


class _Failed:
    pass


_FAILED = _Failed()


async def _attempt(slug: str, pool: WorkerPool, scan_fn: ScanFn, timeouts: ScanTimeouts) -> Any:
    """Run one unit under a pool permit; any failure becomes the _FAILED marker."""
    try:
        async with pool.permit():
            return await scan_fn(slug, timeouts)
    except PoolSaturated as exc:
        logger.warning("No permit for %s: %s", slug, exc)
    except ScanError as exc:
        logger.info("Unit %s failed (%s): %s", slug, type(exc).__name__, exc.reason)
    except Exception:
        logger.exception("Unexpected error while scanning %s", slug)
    return _FAILED


async def run_pass(
    slugs: list[str],
    pool: WorkerPool,
    scan_fn: ScanFn,
    timeouts: ScanTimeouts,
) -> tuple[dict[str, Any], list[str]]:
    """
    Scan ``slugs`` with a fixed set of workers draining a shared queue.

    The worker count equals the pool capacity; each unit still takes its own
    permit, so other users of the same pool are accounted for.

    Returns:
        tuple: (results by slug, failed slugs). Order carries no meaning.
    """
    queue: asyncio.Queue[str] = asyncio.Queue()
    for slug in slugs:
        queue.put_nowait(slug)

    successes: dict[str, Any] = {}
    failures: list[str] = []

    async def worker() -> None:
        while True:
            try:
                slug = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            result = await _attempt(slug, pool, scan_fn, timeouts)
            if result is _FAILED:
                failures.append(slug)
            else:
                successes[slug] = result

    workers = min(pool.capacity, len(slugs))
    await asyncio.gather(*(worker() for _ in range(workers)))
    return successes, failures


async def run_two_pass(
    slugs: list[str],
    pool: WorkerPool,
    scan_fn: ScanFn,
    timeouts: ScanTimeouts = NORMAL_TIMEOUTS,
) -> BatchOutcome:
    """
    Scan every slug, then retry failures once with doubled deadlines.

    Args:
        slugs: Repository slugs. Duplicates are scanned once.
        pool: Worker pool bounding concurrent units.
        scan_fn: ``async (slug, timeouts) -> result``; raising means failure.
        timeouts: Pass-1 deadlines. Pass 2 uses ``timeouts.doubled()``.

    Returns:
        BatchOutcome: Successful results and the final state of every unit.
    """
    unique = list(dict.fromkeys(slugs))
    outcome = BatchOutcome(states={slug: UnitState.NOT_ATTEMPTED for slug in unique})

    results, failed = await run_pass(unique, pool, scan_fn, timeouts)
    outcome.results.update(results)
    for slug in unique:
        outcome.states[slug] = next_state(UnitState.NOT_ATTEMPTED, slug in results)

    if failed:
        logger.info(
            "Retrying %d/%d failed repos with extended timeouts",
            len(failed),
            len(unique),
        )
        recovered, _ = await run_pass(failed, pool, scan_fn, timeouts.doubled())
        outcome.results.update(recovered)
        for slug in failed:
            outcome.states[slug] = next_state(UnitState.FAILED_PASS1, slug in recovered)
        logger.info("Retry recovered %d repos", len(recovered))

    return outcome
