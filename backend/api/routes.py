"""API route definitions for the scan worker."""

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse

from models.scan import IndexScanRequest, IndexScanStarted, ScanRequest
from services.app_state import AppState
from services.errors import PanelError, PoolSaturated, ScanError
from services.index_runner import run_index_scan, validate_panel
from services.publisher import fetch_panel
from services.repo_scanner import ScanTimeouts, scan_repository
from utils.auth import token_matches
from utils.dates import current_quarter, today_iso
from utils.validation import ValidationError, parse_repo_reference, resolve_scan_dates, validate_date

logger = logging.getLogger(__name__)

router = APIRouter()


def get_app_state(request: Request) -> AppState:
    """Shared state built at startup (see main.create_app)."""
    return request.app.state.app_state


def require_token(request: Request, state: AppState = Depends(get_app_state)) -> None:
    """Reject the request with 401 unless it carries the configured bearer token."""
    if not token_matches(request.headers.get("authorization"), state.settings.auth_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


@router.get("/health")
async def health_check() -> dict:
    """
    Lightweight endpoint for uptime checks.

    Returns:
        dict: Health status payload.
    """
    return {"status": "healthy"}


# ============================================================================
# INTERACTIVE SCAN
# ============================================================================


@router.post("/scan", dependencies=[Depends(require_token)])
async def scan(payload: ScanRequest, state: AppState = Depends(get_app_state)) -> dict:
    """
    Clone and analyze a single repository and return the analyzer's report.

    Request body:
        {
            "repo": "owner/name" | "https://github.com/owner/name",
            "since": "2025-01-01"  // optional
        }

    Returns:
        dict: The analyzer's JSON document, unchanged.

    Raises:
        HTTPException: 400 for a malformed repo or date.
        HTTPException: 429 if no scan slot is available.
        HTTPException: 500 if clone, analysis or parsing fails (details are logged only).
    """
    settings = state.settings
    try:
        since = validate_date(
            settings.default_since if payload.since is None else payload.since,
            "since",
        )
        repo = parse_repo_reference(payload.repo, settings.allowed_hosts)

        async with state.user_pool.permit(timeout=settings.user_acquire_timeout):
            return await scan_repository(
                repo,
                since=since,
                git_bin=settings.git_bin,
                analyzer_bin=settings.analyzer_bin,
                workspace_dir=settings.workspace_dir,
                timeouts=ScanTimeouts(),
                clone_base_url=settings.clone_base_url,
            )
    except HTTPException:
        raise
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PoolSaturated as e:
        logger.warning("Interactive scan rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many concurrent scans",
        )
    except ScanError as e:
        # Scanner already logged stage/stderr; the caller only gets the generic message
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.public_message,
        )


# ============================================================================
# INDEX SCAN
# ============================================================================


@router.post(
    "/index-scan",
    dependencies=[Depends(require_token)],
    status_code=status.HTTP_202_ACCEPTED,
    response_model=None,
)
async def index_scan(
    payload: IndexScanRequest,
    state: AppState = Depends(get_app_state),
) -> IndexScanStarted | JSONResponse:
    """
    Start an index run over the current quarter's panel.

    Results go to the aggregator, not to this caller. The run continues in
    the background after this request has returned.

    Request body:
        {
            "scan_dates": ["2025-03-01", ...],  // optional
            "from_date": "2025-01-01",          // optional, with to_date
            "to_date": "2025-01-31"
        }

    Returns:
        IndexScanStarted: Number of repos, quarter and dates being scanned.

    Raises:
        HTTPException: 400 for malformed dates or ranges.
        HTTPException: 502 if the panel cannot be fetched.
    """
    settings = state.settings
    try:
        scan_dates = resolve_scan_dates(
            payload.scan_dates,
            payload.from_date,
            payload.to_date,
            today=today_iso(),
        )
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    quarter = current_quarter()
    try:
        async with httpx.AsyncClient(timeout=settings.publish_timeout) as client:
            slugs = await fetch_panel(client, settings.api_url, quarter)
    except PanelError as e:
        logger.error("Index scan aborted: %s", e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to fetch panel")

    repos = validate_panel(slugs, settings.allowed_hosts)
    if not repos:
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"error": "No repos in panel", "quarter": quarter},
        )

    logger.info("Index scan starting: %d repos for %s", len(repos), quarter)
    state.supervisor.spawn(
        run_index_scan(state, repos, scan_dates),
        name=f"index-scan-{quarter}-{scan_dates[0]}",
    )

    return IndexScanStarted(repos=len(repos), quarter=quarter, scan_dates=scan_dates)
