"""Exception types raised by the scan pipeline.

Scan failures carry the diagnostic detail (exit code, stderr excerpt) for
server-side logging. Routes only ever return the generic ``public_message``.
"""

from enum import Enum


class ScanStage(str, Enum):
    """Lifecycle of a single repository scan."""

    PENDING = "pending"
    CLONING = "cloning"
    ANALYZING = "analyzing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ScanError(Exception):
    """Base class for a failed repository scan."""

    public_message = "Scan failed"
    stage = ScanStage.FAILED

    def __init__(
        self,
        repo: str,
        reason: str,
        *,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(f"{repo}: {reason}")
        self.repo = repo
        self.reason = reason
        self.returncode = returncode
        self.stderr = stderr


class CloneFailure(ScanError):
    public_message = "Clone failed: repository not accessible"
    stage = ScanStage.CLONING


class AnalyzeFailure(ScanError):
    public_message = "Analysis failed"
    stage = ScanStage.ANALYZING


class ScanTimeout(ScanError):
    """Base for failures caused by an exceeded deadline; records the deadline in seconds."""

    def __init__(self, repo: str, timeout: float) -> None:
        super().__init__(repo, f"timed out after {timeout:g}s")
        self.timeout = timeout


class CloneTimeout(ScanTimeout, CloneFailure):
    pass


class AnalyzeTimeout(ScanTimeout, AnalyzeFailure):
    pass


class ParseFailure(ScanError):
    public_message = "Analysis produced unreadable output"
    stage = ScanStage.ANALYZING


class PoolSaturated(Exception):
    """A worker pool could not hand out a permit (closed, or acquire timed out)."""

    def __init__(self, pool_name: str, reason: str) -> None:
        super().__init__(f"{pool_name} pool: {reason}")
        self.pool_name = pool_name
        self.reason = reason


class PanelError(Exception):
    """The aggregator's index panel could not be fetched or parsed."""
