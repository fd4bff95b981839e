"""Repository scan unit: shallow clone, run the analyzer, parse its report.

One call clones a single repository into a private workspace, runs the
vibereport analyzer against it and returns the parsed JSON document. Both
subprocesses are bounded by a deadline; a timed-out process is killed. The
workspace is removed on every exit path.
"""

import asyncio
import json
import logging
import shutil
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator

from pydantic import ValidationError as PydanticValidationError

from models.scan import AnalyzerReport, DayEntry, RepoDailyBreakdown, RepoScanResult
from services.errors import (
    AnalyzeFailure,
    AnalyzeTimeout,
    CloneFailure,
    CloneTimeout,
    ParseFailure,
    ScanStage,
)
from utils.git_clone import analyzer_args, shallow_clone_args
from utils.validation import RepoIdentifier

logger = logging.getLogger(__name__)

STDERR_LOG_LIMIT = 2000


@dataclass(frozen=True)
class ScanTimeouts:
    clone: float = 120.0
    analyze: float = 60.0

    def doubled(self) -> "ScanTimeouts":
        return ScanTimeouts(clone=self.clone * 2, analyze=self.analyze * 2)


NORMAL_TIMEOUTS = ScanTimeouts()
RETRY_TIMEOUTS = NORMAL_TIMEOUTS.doubled()


@dataclass
class ProcessResult:
    returncode: int
    stdout: bytes
    stderr: str


def _stderr_excerpt(raw: bytes) -> str:
    text = raw.decode("utf-8", errors="replace").strip()
    if len(text) > STDERR_LOG_LIMIT:
        return text[:STDERR_LOG_LIMIT] + "..."
    return text


async def _run_with_deadline(argv: list[str], timeout: float) -> ProcessResult:
    """
    Run a subprocess and collect its output, killing it past the deadline.

    Raises:
        asyncio.TimeoutError: The process outlived ``timeout`` (it has been killed).
        OSError: The executable could not be started.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    finally:
        # Timeout or cancellation: never leave the child running
        if proc.returncode is None:
            try:
                proc.kill()
            except ProcessLookupError:
                pass
            await proc.wait()
    return ProcessResult(returncode=proc.returncode, stdout=stdout, stderr=_stderr_excerpt(stderr))


def new_workspace_path(workspace_dir: str, prefix: str = "vibereport") -> Path:
    """Unique, not-yet-existing directory path for one scan."""
    return Path(workspace_dir) / f"{prefix}-{uuid.uuid4()}"


@asynccontextmanager
async def scan_workspace(workspace_dir: str, prefix: str = "vibereport") -> AsyncIterator[Path]:
    """Yield a fresh workspace path and remove it afterwards, whatever happened."""
    path = new_workspace_path(workspace_dir, prefix)
    try:
        yield path
    finally:
        await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)


async def clone_repository(
    repo: RepoIdentifier,
    dest: Path,
    *,
    since: str,
    git_bin: str,
    timeout: float,
    clone_base_url: str | None = None,
) -> None:
    """
    Shallow-clone ``repo`` into ``dest`` keeping only commits after ``since``.

    Raises:
        CloneTimeout: git did not finish within ``timeout`` seconds.
        CloneFailure: git could not be started or exited non-zero.
    """
    argv = shallow_clone_args(git_bin, repo.clone_url(clone_base_url), str(dest), since)
    try:
        result = await _run_with_deadline(argv, timeout)
    except asyncio.TimeoutError:
        raise CloneTimeout(repo.slug, timeout) from None
    except OSError as exc:
        raise CloneFailure(repo.slug, f"could not start git: {exc}") from exc
    if result.returncode != 0:
        raise CloneFailure(
            repo.slug,
            f"git exited with status {result.returncode}",
            returncode=result.returncode,
            stderr=result.stderr,
        )


async def run_analyzer(
    repo: RepoIdentifier,
    repo_path: Path,
    *,
    since: str,
    analyzer_bin: str,
    timeout: float,
) -> dict:
    """
    Run the analyzer on a cloned repository and parse its JSON report.

    Raises:
        AnalyzeTimeout: The analyzer did not finish within ``timeout`` seconds.
        AnalyzeFailure: The analyzer could not be started or exited non-zero.
        ParseFailure: stdout was not a JSON object.
    """
    argv = analyzer_args(analyzer_bin, str(repo_path), since)
    try:
        result = await _run_with_deadline(argv, timeout)
    except asyncio.TimeoutError:
        raise AnalyzeTimeout(repo.slug, timeout) from None
    except OSError as exc:
        raise AnalyzeFailure(repo.slug, f"could not start analyzer: {exc}") from exc
    if result.returncode != 0:
        raise AnalyzeFailure(
            repo.slug,
            f"analyzer exited with status {result.returncode}",
            returncode=result.returncode,
            stderr=result.stderr,
        )

    try:
        document = json.loads(result.stdout.decode("utf-8", errors="replace"))
    except json.JSONDecodeError as exc:
        raise ParseFailure(repo.slug, f"analyzer output is not JSON: {exc}") from None
    if not isinstance(document, dict):
        raise ParseFailure(repo.slug, f"analyzer output is a JSON {type(document).__name__}, expected an object")
    return document


async def scan_repository(
    repo: RepoIdentifier,
    *,
    since: str,
    git_bin: str,
    analyzer_bin: str,
    workspace_dir: str,
    timeouts: ScanTimeouts = NORMAL_TIMEOUTS,
    clone_base_url: str | None = None,
    workspace_prefix: str = "vibereport",
) -> dict:
    """
    Clone and analyze one repository.

    Args:
        repo: Validated repository reference.
        since: YYYY-MM-DD cutoff for both the shallow clone and the analyzer.
        git_bin: git executable.
        analyzer_bin: Analyzer executable.
        workspace_dir: Parent directory for the per-scan workspace.
        timeouts: Clone and analyze deadlines in seconds.
        clone_base_url: Optional replacement for https://<host> in the clone URL.
        workspace_prefix: Workspace directory name prefix.

    Returns:
        dict: The analyzer's JSON document.

    Raises:
        ScanError: A CloneFailure, AnalyzeFailure (or their timeout variants) or ParseFailure.
    """
    stage = ScanStage.PENDING
    async with scan_workspace(workspace_dir, workspace_prefix) as workspace:
        try:
            stage = ScanStage.CLONING
            await clone_repository(
                repo,
                workspace,
                since=since,
                git_bin=git_bin,
                timeout=timeouts.clone,
                clone_base_url=clone_base_url,
            )
            stage = ScanStage.ANALYZING
            document = await run_analyzer(
                repo,
                workspace,
                since=since,
                analyzer_bin=analyzer_bin,
                timeout=timeouts.analyze,
            )
        except (CloneFailure, AnalyzeFailure, ParseFailure) as exc:
            logger.warning(
                "Scan of %s failed while %s: %s%s",
                repo.slug,
                stage.value,
                exc.reason,
                f" | stderr: {exc.stderr}" if exc.stderr else "",
            )
            raise
    logger.debug("Scan of %s %s", repo.slug, ScanStage.SUCCEEDED.value)
    return document


def summarize_report(repo_slug: str, document: dict) -> RepoScanResult:
    """
    Reduce an analyzer document to the totals posted to the aggregator.

    Raises:
        ParseFailure: If the counters are present but not non-negative integers.
    """
    try:
        report = AnalyzerReport.model_validate(document)
    except PydanticValidationError as exc:
        raise ParseFailure(repo_slug, f"unexpected analyzer report shape: {exc.error_count()} error(s)") from None
    return RepoScanResult(
        repo_slug=repo_slug,
        total_commits=report.total_commits,
        ai_commits=report.ai_commits,
    )


def extract_daily_breakdown(repo_slug: str, document: dict) -> RepoDailyBreakdown:
    """Collect the analyzer's daily_commits entries, skipping malformed ones."""
    raw_days = document.get("daily_commits")
    days: list[DayEntry] = []
    if isinstance(raw_days, list):
        for raw in raw_days:
            try:
                days.append(DayEntry.model_validate(raw))
            except PydanticValidationError:
                logger.debug("Skipping malformed daily entry for %s: %r", repo_slug, raw)
    return RepoDailyBreakdown(repo_slug=repo_slug, days=days)
