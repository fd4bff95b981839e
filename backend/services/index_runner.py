"""Index run: scan the quarter's panel and publish one result set per date.

Runs as a detached background task; the HTTP request that triggered it has
already returned by the time scanning starts.
"""

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass

import httpx

from models.scan import RepoDailyBreakdown, RepoScanResult
from services.app_state import AppState, Settings
from services.backfill import build_backfill_result_sets
from services.batch_scheduler import ScanFn, run_two_pass
from services.publisher import publish_results
from services.repo_scanner import (
    ScanTimeouts,
    extract_daily_breakdown,
    scan_repository,
    summarize_report,
)
from utils.validation import RepoIdentifier, ValidationError, parse_repo_reference

logger = logging.getLogger(__name__)


@dataclass
class IndexUnitResult:
    """What one successful index unit contributes to the run."""

    summary: RepoScanResult
    breakdown: RepoDailyBreakdown | None = None


def validate_panel(slugs: list[str], allowed_hosts: tuple[str, ...]) -> list[RepoIdentifier]:
    """Keep only panel entries that pass repository validation, without duplicates."""
    repos: dict[str, RepoIdentifier] = {}
    for slug in slugs:
        try:
            repo = parse_repo_reference(slug, allowed_hosts)
        except ValidationError as exc:
            logger.warning("Skipping invalid panel entry %r: %s", slug, exc)
            continue
        repos.setdefault(repo.slug, repo)
    return list(repos.values())


def make_index_scan_fn(
    settings: Settings,
    repos: list[RepoIdentifier],
    *,
    backfill: bool,
) -> ScanFn:
    """Build the per-unit function the batch scheduler calls for each slug."""
    by_slug = {repo.slug: repo for repo in repos}

    async def scan_unit(slug: str, timeouts: ScanTimeouts) -> IndexUnitResult:
        repo = by_slug[slug]
        document = await scan_repository(
            repo,
            since=settings.index_since,
            git_bin=settings.git_bin,
            analyzer_bin=settings.analyzer_bin,
            workspace_dir=settings.workspace_dir,
            timeouts=timeouts,
            clone_base_url=settings.clone_base_url,
            workspace_prefix="vibereport-idx",
        )
        summary = summarize_report(slug, document)
        breakdown = extract_daily_breakdown(slug, document) if backfill else None
        return IndexUnitResult(summary=summary, breakdown=breakdown)

    return scan_unit


def build_result_sets(
    units: dict[str, IndexUnitResult],
    scan_dates: list[str],
) -> dict[str, list[RepoScanResult]]:
    """
    Turn successful units into the result set posted for each date.

    With one date the analyzer's cumulative totals are used as they are.
    With several dates each one is rebuilt from the daily breakdown.
    """
    if len(scan_dates) > 1:
        breakdowns = [
            unit.breakdown or RepoDailyBreakdown(repo_slug=slug)
            for slug, unit in units.items()
        ]
        return build_backfill_result_sets(breakdowns, scan_dates)
    return {scan_dates[0]: [unit.summary for unit in units.values()]}


async def run_index_scan(
    state: AppState,
    repos: list[RepoIdentifier],
    scan_dates: list[str],
    *,
    scan_fn: ScanFn | None = None,
    client: httpx.AsyncClient | None = None,
) -> dict[str, list[RepoScanResult]]:
    """
    Scan every panel repository and publish results for each scan date.

    Args:
        state: Shared application state (index pool, settings).
        repos: Validated panel repositories.
        scan_dates: Dates to publish, oldest first. More than one means backfill.
        scan_fn: Optional replacement for the clone+analyze unit.
        client: Optional HTTP client for the aggregator.

    Returns:
        dict: Result set per scan date, as published. Empty if the index pool
            was shut down before publishing.
    """
    settings = state.settings
    backfill = len(scan_dates) > 1
    if scan_fn is None:
        scan_fn = make_index_scan_fn(settings, repos, backfill=backfill)

    slugs = [repo.slug for repo in repos]
    logger.info(
        "Index run started: %d repos, %d date(s)%s",
        len(slugs),
        len(scan_dates),
        " (backfill)" if backfill else "",
    )
    outcome = await run_two_pass(slugs, state.index_pool, scan_fn)
    logger.info(
        "Index scan complete: %d/%d repos scanned, posting results for %d date(s)",
        len(outcome.results),
        len(slugs),
        len(scan_dates),
    )
    if outcome.dropped:
        logger.warning("Dropped after retry: %s", ", ".join(sorted(outcome.dropped)))

    if state.index_pool.closed:
        # Units refused by the closed pool are missing; a partial set is never published
        logger.warning(
            "Index pool shut down during the run; not publishing %d date(s)",
            len(scan_dates),
        )
        return {}

    result_sets = build_result_sets(outcome.results, scan_dates)

    async with AsyncExitStack() as stack:
        if client is None:
            client = await stack.enter_async_context(
                httpx.AsyncClient(timeout=settings.publish_timeout)
            )
        for scan_date in scan_dates:
            await publish_results(
                client,
                settings.api_url,
                settings.auth_token,
                scan_date,
                result_sets[scan_date],
            )

    return result_sets
