"""Git executable discovery and command lines for the scan subprocesses.

GitPython is used to locate and validate the git binary once at startup; the
clone itself runs as an asyncio subprocess so it can be bounded by a deadline
and killed without tying up a thread.
"""

import os
import shutil

import git
from git.cmd import Git


def resolve_git_executable() -> str:
    """
    Find the git executable and register it with GitPython.

    Checks PATH first, then GIT_PYTHON_GIT_EXECUTABLE.

    Returns:
        str: Path to the git executable.

    Raises:
        RuntimeError: If no working git executable can be found.
    """
    git_path = shutil.which("git") or os.getenv("GIT_PYTHON_GIT_EXECUTABLE")
    if not git_path:
        raise RuntimeError(
            "Git executable not found. Install git or set GIT_PYTHON_GIT_EXECUTABLE "
            "to the path of the git binary."
        )

    os.environ["GIT_PYTHON_GIT_EXECUTABLE"] = git_path
    try:
        # refresh() runs `git version` and raises if the binary is unusable
        git.refresh(path=git_path)
    except Exception as exc:
        raise RuntimeError(f"Git executable at {git_path} is not usable: {exc}") from exc
    return Git.GIT_PYTHON_GIT_EXECUTABLE or git_path


def shallow_clone_args(git_bin: str, clone_url: str, dest: str, since: str) -> list[str]:
    """Command line for a clone truncated to commits after ``since``."""
    return [git_bin, "clone", "--quiet", f"--shallow-since={since}", clone_url, dest]


def analyzer_args(analyzer_bin: str, repo_path: str, since: str) -> list[str]:
    """Command line asking the analyzer for a machine-readable report without sharing."""
    return [analyzer_bin, repo_path, "--json", "--since", since, "--no-share"]
