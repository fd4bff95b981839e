"""Data models for repository scans.

Request bodies for /scan and /index-scan, the per-repository summary posted to
the aggregator, and the daily breakdown the analyzer emits for backfill runs.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ScanRequest(BaseModel):
    """Request model for the interactive scan endpoint."""

    repo: str  # "owner/name", "github:owner/name" or "https://github.com/owner/name[.git]"
    since: str | None = None  # YYYY-MM-DD, defaults to DEFAULT_SINCE


class IndexScanRequest(BaseModel):
    """Request model for the index-scan endpoint.

    A complete from_date/to_date pair takes precedence over scan_dates.
    With neither, the scan is posted for today (UTC).
    """

    scan_dates: list[str] | None = None
    from_date: str | None = None
    to_date: str | None = None


class IndexScanStarted(BaseModel):
    """Acknowledgment returned once an index run has been handed to the supervisor."""

    status: str = "started"
    repos: int
    quarter: str
    scan_dates: list[str]


class RepoScanResult(BaseModel):
    """Summary of one repository for one scan date."""

    repo_slug: str
    total_commits: int = 0
    ai_commits: int = 0


class DayEntry(BaseModel):
    """Non-cumulative commit counts for a single calendar day."""

    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    total: int = Field(ge=0)
    ai: int = Field(ge=0)


class RepoDailyBreakdown(BaseModel):
    """Daily deltas for one repository, oldest first. Days without commits may be missing."""

    repo_slug: str
    days: list[DayEntry] = Field(default_factory=list)


class AnalyzerReport(BaseModel):
    """The counters of the analyzer's --json document the index run relies on.

    Unknown keys (score, grade, languages, daily_commits, ...) are kept so the
    interactive path can hand the document back untouched. A missing or null
    counter counts as 0. daily_commits is read separately, entry by entry.
    """

    model_config = ConfigDict(extra="allow")

    total_commits: int = Field(default=0, ge=0)
    ai_commits: int = Field(default=0, ge=0)

    @field_validator("total_commits", "ai_commits", mode="before")
    @classmethod
    def null_counter_is_zero(cls, value):
        return 0 if value is None else value


class IndexResultsPayload(BaseModel):
    """Body posted to the aggregator's /api/index-results endpoint."""

    scan_date: str
    results: list[RepoScanResult]
