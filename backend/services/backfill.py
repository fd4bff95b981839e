"""Per-date result sets for index runs.

A single-date run posts the analyzer's cumulative totals as they are. A
multi-date (backfill) run rebuilds each date's cumulative counts from the
analyzer's non-cumulative daily entries.
"""

from models.scan import RepoDailyBreakdown, RepoScanResult


def cumulative_as_of(breakdown: RepoDailyBreakdown, scan_date: str) -> tuple[int, int]:
    """
    Sum daily deltas up to and including ``scan_date``.

    ISO dates compare correctly as strings. Days without an entry simply add
    nothing, so a repository keeps its previous cumulative value.

    Returns:
        tuple[int, int]: (total commits, AI commits) as of scan_date.
    """
    total = 0
    ai = 0
    for day in breakdown.days:
        if day.date <= scan_date:
            total += day.total
            ai += day.ai
    return total, ai


def results_for_date(breakdowns: list[RepoDailyBreakdown], scan_date: str) -> list[RepoScanResult]:
    """Cumulative results for one date, leaving out repositories with nothing to report."""
    results: list[RepoScanResult] = []
    for breakdown in breakdowns:
        total, ai = cumulative_as_of(breakdown, scan_date)
        if total == 0:
            continue
        results.append(
            RepoScanResult(repo_slug=breakdown.repo_slug, total_commits=total, ai_commits=ai)
        )
    return results


def build_backfill_result_sets(
    breakdowns: list[RepoDailyBreakdown],
    scan_dates: list[str],
) -> dict[str, list[RepoScanResult]]:
    """One result set per target date; dates are independent of each other."""
    return {scan_date: results_for_date(breakdowns, scan_date) for scan_date in scan_dates}
