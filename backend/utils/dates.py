"""Calendar helpers for index runs (UTC based)."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def today_iso(now: datetime | None = None) -> str:
    """Today's date as YYYY-MM-DD."""
    return (now or utc_now()).strftime("%Y-%m-%d")


def current_quarter(now: datetime | None = None) -> str:
    """Quarter label used by the aggregator's panel, e.g. "2025-Q3"."""
    now = now or utc_now()
    return f"{now.year}-Q{(now.month - 1) // 3 + 1}"


def start_of_year(now: datetime | None = None) -> str:
    return f"{(now or utc_now()).year}-01-01"
