"""
Remembered choices across runs, stored as a small JSON key/value file
"""

import json
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

SESSION_VERSION = 1
MAX_RECENT_YEARS = 10
REMEMBERED_KEYS = ("repository", "author_mode", "hour", "username")
# Only meaningful for the repository they were used with
TARGET_KEYS = ("owner", "branch")
FORBIDDEN_KEYS = ("token",)


def default_session_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "git-timetraveler" / "session.json"


class SessionStore:
    """Explicit preference store handed to the CLI as default inputs."""

    def __init__(self, path: Optional[Path] = None):
        self.path = path or default_session_path()
        self.data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return {}

        if not isinstance(data, dict) or data.get("version") != SESSION_VERSION:
            logger.debug(f"Session file {self.path} has an unknown format, starting fresh")
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get("values", {}).get(key, default)

    def set(self, key: str, value: Any) -> None:
        if key in FORBIDDEN_KEYS:
            raise ValueError(f"'{key}' must never be persisted")
        self.data.setdefault("values", {})[key] = value

    def target_defaults(self, repository: str) -> Dict[str, Any]:
        """Owner and branch last used with `repository`."""
        targets = self.data.get("targets")
        entry = targets.get(repository) if isinstance(targets, dict) else None
        return dict(entry) if isinstance(entry, dict) else {}

    @property
    def recent_years(self) -> List[int]:
        return list(self.data.get("recent_years", []))

    def remember(self, choices: Dict[str, Any], years: Optional[List[int]] = None) -> None:
        """Record the choices of a successful run."""
        for key in REMEMBERED_KEYS:
            value = choices.get(key)
            if value is not None:
                self.set(key, value)

        repository = choices.get("repository")
        if repository:
            self.data.setdefault("targets", {})[repository] = {
                key: choices[key] for key in TARGET_KEYS if choices.get(key) is not None
            }

        if years:
            recent = [y for y in self.recent_years if y not in years]
            self.data["recent_years"] = (list(years) + recent)[:MAX_RECENT_YEARS]

        self.data["executions"] = self.data.get("executions", 0) + 1
        self.data["last_use"] = int(time.time())

    def save(self) -> None:
        """Write atomically: temp file then rename."""
        self.data["version"] = SESSION_VERSION
        self.path.parent.mkdir(parents=True, exist_ok=True)

        temp = self.path.with_suffix(".tmp")
        with open(temp, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2)
        os.replace(temp, self.path)
        logger.debug(f"Session saved to {self.path}")
