"""Client for the aggregator API: index panel in, per-date results out."""

import logging

import httpx

from models.scan import IndexResultsPayload, RepoScanResult
from services.errors import PanelError

logger = logging.getLogger(__name__)


async def fetch_panel(client: httpx.AsyncClient, api_url: str, quarter: str) -> list[str]:
    """
    Fetch the repository slugs eligible for this quarter's index.

    Entries without a string repo_slug are ignored.

    Raises:
        PanelError: On transport errors, non-2xx status, or an unexpected body.
    """
    try:
        response = await client.get(f"{api_url}/api/index-panel", params={"quarter": quarter})
        response.raise_for_status()
        body = response.json()
    except httpx.HTTPError as exc:
        raise PanelError(f"Failed to fetch panel for {quarter}: {exc}") from exc
    except ValueError as exc:
        raise PanelError(f"Panel parse error: {exc}") from exc

    repos = body.get("repos") if isinstance(body, dict) else None
    if not isinstance(repos, list):
        return []
    return [
        entry["repo_slug"]
        for entry in repos
        if isinstance(entry, dict) and isinstance(entry.get("repo_slug"), str)
    ]


async def publish_results(
    client: httpx.AsyncClient,
    api_url: str,
    auth_token: str,
    scan_date: str,
    results: list[RepoScanResult],
) -> bool:
    """
    POST one date's results to the aggregator.

    Delivery is at-most-once: failures are logged and never retried.

    Returns:
        bool: True if the aggregator answered with a 2xx status.
    """
    payload = IndexResultsPayload(scan_date=scan_date, results=results)
    try:
        response = await client.post(
            f"{api_url}/api/index-results",
            headers={"Authorization": f"Bearer {auth_token}"},
            json=payload.model_dump(),
        )
    except httpx.HTTPError as exc:
        logger.error("Failed to post index results for %s: %s", scan_date, exc)
        return False

    if response.is_success:
        logger.info(
            "Index results posted for %s: status=%d, repos=%d",
            scan_date,
            response.status_code,
            len(results),
        )
        return True

    logger.warning(
        "Aggregator rejected index results for %s: status=%d, body=%s",
        scan_date,
        response.status_code,
        response.text[:500],
    )
    return False
