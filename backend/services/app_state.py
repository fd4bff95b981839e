"""Process-wide configuration and shared state.

Settings are read from the environment once at startup. AppState bundles them
with the two worker pools and the background supervisor; handlers receive it
through a FastAPI dependency and never mutate it except through the pools'
acquire/release protocol.
"""

import os
import tempfile
from dataclasses import dataclass, field

from services.supervisor import BackgroundSupervisor
from services.worker_pool import WorkerPool
from utils.dates import start_of_year
from utils.validation import DEFAULT_HOST, ValidationError, validate_date


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def _env_date(name: str, default: str) -> str:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return validate_date(raw, name)
    except ValidationError as exc:
        raise RuntimeError(str(exc)) from None


@dataclass(frozen=True)
class Settings:
    """Environment-provided configuration."""

    auth_token: str
    port: int = 3001
    host: str = "127.0.0.1"
    analyzer_bin: str = "vibereport"
    api_url: str = "http://localhost:8787"
    git_bin: str = "git"
    allowed_hosts: tuple[str, ...] = (DEFAULT_HOST,)
    clone_base_url: str | None = None
    workspace_dir: str = field(default_factory=tempfile.gettempdir)
    default_since: str = "2025-01-01"
    index_since: str = field(default_factory=start_of_year)
    user_pool_size: int = 2
    index_pool_size: int = 3
    user_acquire_timeout: float | None = None
    publish_timeout: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, git_bin: str = "git") -> "Settings":
        """
        Build Settings from environment variables.

        Raises:
            RuntimeError: If AUTH_TOKEN is missing or a value cannot be parsed.
        """
        auth_token = os.getenv("AUTH_TOKEN", "")
        if not auth_token:
            raise RuntimeError("AUTH_TOKEN environment variable is required")

        hosts = tuple(
            h.strip().lower()
            for h in os.getenv("GIT_ALLOWED_HOSTS", DEFAULT_HOST).split(",")
            if h.strip()
        ) or (DEFAULT_HOST,)

        return cls(
            auth_token=auth_token,
            port=_env_int("PORT", 3001),
            host=os.getenv("HOST", "127.0.0.1"),
            analyzer_bin=os.getenv("VIBEREPORT_BIN", "vibereport"),
            api_url=os.getenv("API_URL", "http://localhost:8787").rstrip("/"),
            git_bin=git_bin,
            allowed_hosts=hosts,
            clone_base_url=os.getenv("CLONE_BASE_URL") or None,
            workspace_dir=os.getenv("WORKSPACE_DIR") or tempfile.gettempdir(),
            default_since=_env_date("DEFAULT_SINCE", "2025-01-01"),
            index_since=_env_date("INDEX_SINCE", start_of_year()),
            user_pool_size=_env_int("USER_POOL_SIZE", 2),
            index_pool_size=_env_int("INDEX_POOL_SIZE", 3),
            user_acquire_timeout=_env_float("USER_ACQUIRE_TIMEOUT", None),
            publish_timeout=_env_float("PUBLISH_TIMEOUT", 30.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )


@dataclass
class AppState:
    """Shared state for the lifetime of the process."""

    settings: Settings
    user_pool: WorkerPool
    index_pool: WorkerPool
    supervisor: BackgroundSupervisor

    async def shutdown(self, timeout: float = 5.0) -> None:
        """Stop handing out permits and cancel index runs still in flight."""
        self.user_pool.close()
        self.index_pool.close()
        await self.supervisor.shutdown(timeout)


def build_app_state(settings: Settings) -> AppState:
    return AppState(
        settings=settings,
        user_pool=WorkerPool("user", settings.user_pool_size),
        index_pool=WorkerPool("index", settings.index_pool_size),
        supervisor=BackgroundSupervisor(),
    )
