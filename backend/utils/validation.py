"""Input validation for scan requests.

Everything here runs before a subprocess is spawned. Repository owner/name
end up inside the clone URL and the workspace path, so the character class
below is the only thing standing between a request body and the git command
line.
"""

import re
from dataclasses import dataclass
from datetime import date, timedelta

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_COMPONENT = r"[a-zA-Z0-9_.-]+"
REPO_URL_RE = re.compile(
    rf"^https://(?P<host>[a-zA-Z0-9.-]+)/(?P<owner>{_COMPONENT})/(?P<name>{_COMPONENT})$"
)
REPO_SLUG_RE = re.compile(rf"^(?P<owner>{_COMPONENT})/(?P<name>{_COMPONENT})$")

DEFAULT_HOST = "github.com"


class ValidationError(ValueError):
    """Request input rejected before any work was scheduled.

    Messages are safe to return to the caller verbatim.
    """


@dataclass(frozen=True)
class RepoIdentifier:
    """A validated repository reference."""

    owner: str
    name: str
    host: str = DEFAULT_HOST

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.name}"

    def clone_url(self, base_url: str | None = None) -> str:
        """Build the URL handed to git clone.

        Args:
            base_url: Optional replacement for ``https://<host>`` (mirrors, local fixtures).
        """
        base = base_url.rstrip("/") if base_url else f"https://{self.host}"
        return f"{base}/{self.owner}/{self.name}.git"


def _strip_git_suffix(name: str) -> str:
    return name[:-4] if name.endswith(".git") else name


def _check_components(owner: str, name: str) -> bool:
    return bool(owner and name) and owner not in (".", "..") and name not in (".", "..")


def parse_repo_reference(
    value: str,
    allowed_hosts: tuple[str, ...] = (DEFAULT_HOST,),
) -> RepoIdentifier:
    """
    Parse a repository reference into a RepoIdentifier.

    Accepted shapes:
    - https://<host>/<owner>/<name>[.git], with host in allowed_hosts
    - <owner>/<name>, optionally prefixed with "github:"

    Args:
        value: Raw reference from a request body or the index panel.
        allowed_hosts: Hosts accepted in URLs. The first one is used for slugs.

    Returns:
        RepoIdentifier: Validated owner/name/host.

    Raises:
        ValidationError: If the reference has any other shape.
    """
    default_host = allowed_hosts[0] if allowed_hosts else DEFAULT_HOST
    value = (value or "").strip()

    if value.startswith("http"):
        match = REPO_URL_RE.match(value)
        if match is None or match.group("host").lower() not in {h.lower() for h in allowed_hosts}:
            raise ValidationError(
                f"Invalid repo URL: must be https://{default_host}/{{user}}/{{repo}}"
            )
        owner = match.group("owner")
        name = _strip_git_suffix(match.group("name"))
        if not _check_components(owner, name):
            raise ValidationError(
                f"Invalid repo URL: must be https://{default_host}/{{user}}/{{repo}}"
            )
        return RepoIdentifier(owner=owner, name=name, host=match.group("host").lower())

    cleaned = value.removeprefix("github:")
    match = REPO_SLUG_RE.match(cleaned)
    if match is None:
        raise ValidationError("Invalid repo slug: must be {user}/{repo}")
    owner = match.group("owner")
    name = _strip_git_suffix(match.group("name"))
    if not _check_components(owner, name):
        raise ValidationError("Invalid repo slug: must be {user}/{repo}")
    return RepoIdentifier(owner=owner, name=name, host=default_host)


def parse_date(value: str, field: str = "date") -> date:
    """Parse a strict YYYY-MM-DD string.

    Raises:
        ValidationError: On any other format or an impossible calendar date.
    """
    if not isinstance(value, str) or not DATE_RE.match(value):
        raise ValidationError(f"Invalid {field} format, expected YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: not a calendar date") from None


def validate_date(value: str, field: str = "date") -> str:
    """Validate a YYYY-MM-DD string and return it unchanged."""
    parse_date(value, field)
    return value


def generate_date_range(from_date: str, to_date: str) -> list[str]:
    """
    Expand an inclusive date range into consecutive ISO dates.

    Returns:
        list[str]: Ascending dates from from_date to to_date, both included.

    Raises:
        ValidationError: If either date is invalid or from_date > to_date.
    """
    start = parse_date(from_date, "from_date")
    end = parse_date(to_date, "to_date")
    if start > end:
        raise ValidationError("Invalid date range (check dates are valid and from <= to)")
    return [(start + timedelta(days=offset)).isoformat() for offset in range((end - start).days + 1)]


def resolve_scan_dates(
    scan_dates: list[str] | None,
    from_date: str | None,
    to_date: str | None,
    today: str,
) -> list[str]:
    """
    Decide which dates an index run posts results for.

    Precedence: a complete from_date/to_date pair, then a non-empty
    scan_dates list, then today.
    """
    if from_date is not None and to_date is not None:
        return generate_date_range(from_date, to_date)
    if scan_dates:
        for value in scan_dates:
            if not isinstance(value, str) or not DATE_RE.match(value):
                raise ValidationError(f"Invalid scan_date format: {value}, expected YYYY-MM-DD")
            validate_date(value, "scan_date")
        return list(scan_dates)
    return [today]
