"""
Detection of the surrounding Git repository, used to suggest defaults
"""

import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from loguru import logger

_GITHUB_URL = re.compile(
    r"^(?:https?://(?:[^@/]+@)?github\.com/|ssh://git@github\.com/|git@github\.com:)"
    r"(?P<owner>[^/]+)/(?P<name>[^/]+?)(?:\.git)?/?$"
)


@dataclass
class GitContext:
    """What the current directory tells us about the user's repository."""

    in_repository: bool = False
    branch: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    remotes: Dict[str, str] = field(default_factory=dict)

    def github_remote(self) -> Optional[Tuple[str, str]]:
        """Owner and name of the GitHub remote, preferring origin."""
        names: List[str] = sorted(self.remotes, key=lambda name: name != "origin")
        for name in names:
            parsed = parse_github_url(self.remotes[name])
            if parsed:
                return parsed
        return None


def parse_github_url(url: str) -> Optional[Tuple[str, str]]:
    """Split a GitHub HTTPS or SSH remote URL into (owner, name)."""
    match = _GITHUB_URL.match(url.strip())
    if not match:
        return None
    return match.group("owner"), match.group("name")


def get_git_config(key: str, cwd: Optional[Path] = None) -> Optional[str]:
    """Get value from Git config."""
    output = _git(["config", key], cwd)
    return output or None


def detect_context(path: Optional[Path] = None) -> GitContext:
    """Inspect the repository containing `path` (default: working directory)."""
    context = GitContext()
    if _git(["rev-parse", "--is-inside-work-tree"], path) != "true":
        logger.debug("Not inside a Git repository, no defaults detected")
        return context

    context.in_repository = True
    context.branch = _git(["symbolic-ref", "--short", "-q", "HEAD"], path) or None
    context.user_name = get_git_config("user.name", path)
    context.user_email = get_git_config("user.email", path)

    remotes = _git(["config", "--get-regexp", r"^remote\..*\.url$"], path)
    for line in remotes.splitlines():
        key, _, url = line.partition(" ")
        # remote.<name>.url
        context.remotes[key[len("remote."):-len(".url")]] = url

    logger.debug(f"Detected Git context: branch={context.branch}, remotes={sorted(context.remotes)}")
    return context


def _git(args: List[str], cwd: Optional[Path]) -> str:
    """Run a read-only Git query; empty output when Git fails or is missing."""
    try:
        result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=False)
    except OSError:
        return ""
    return result.stdout.strip() if result.returncode == 0 else ""
