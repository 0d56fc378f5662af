"""
Run configuration: defaults, JSON files, session defaults and CLI overrides
"""

import argparse
import json
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, get_args

from loguru import logger

from timetraveler.dates import DEFAULT_HOUR, MAX_YEAR, MIN_YEAR
from timetraveler.errors import ConfigurationError, InvalidInput
from timetraveler.github import API_URL
from timetraveler.session import REMEMBERED_KEYS, TARGET_KEYS, SessionStore

AUTHOR_MODES = ("self", "traveler")
_REPO_NAME = re.compile(r"^[A-Za-z0-9._-]+$")
_USERNAME = re.compile(r"^[A-Za-z0-9-]+$")


@dataclass
class Config:
    """Configuration for one time travel run. Never holds the token."""

    # Dates
    date_expression: Optional[str]
    month: int
    day: int
    hour: int
    local_time: bool
    message_template: Optional[str]
    min_year: int
    max_year: int

    # Target
    repository: Optional[str]
    owner: Optional[str]
    branch: Optional[str]
    username: Optional[str]
    create_repo: bool
    private: bool

    # Identity
    author_mode: str
    author_name: Optional[str]
    author_email: Optional[str]

    # Remote API
    api_url: str
    retry_attempts: int
    retry_base_delay: float

    # Runtime options
    dry_run: bool
    assume_yes: bool

    def validate(self) -> None:
        """Validate all configuration parameters."""
        errors = []

        if not 1 <= self.month <= 12:
            errors.append(f"month must be 1-12, got {self.month}")
        if not 1 <= self.day <= 31:
            errors.append(f"day must be 1-31, got {self.day}")
        if not 0 <= self.hour <= 23:
            errors.append(f"hour must be 0-23, got {self.hour}")
        if self.min_year > self.max_year:
            errors.append("min_year must be <= max_year")

        if self.author_mode not in AUTHOR_MODES:
            errors.append(f"author_mode must be one of {', '.join(AUTHOR_MODES)}")
        if bool(self.author_name) != bool(self.author_email):
            errors.append("author_name and author_email must be given together")

        if self.retry_attempts < 1:
            errors.append("retry_attempts must be >= 1")
        if self.retry_base_delay < 0:
            errors.append("retry_base_delay must be >= 0")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n  - " + "\n  - ".join(errors),
                "fix the listed settings in the config file or on the command line",
            )

    @staticmethod
    def deserialize(data: dict) -> "Config":
        """Load Config from dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(Config)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                "remove them from the config file",
            )

        errors = [error for error in (field_type_error(name, value) for name, value in data.items()) if error]
        if errors:
            raise ConfigurationError(
                "Configuration has values of the wrong type:\n  - " + "\n  - ".join(errors),
                "fix the listed settings in the config file",
            )

        config = Config(**data)
        config.validate()
        return config

    def serialize(self) -> dict:
        """Save Config to dictionary."""
        return asdict(self)


_FIELD_TYPES = {f.name: f.type for f in fields(Config)}


def field_type_error(name: str, value: Any) -> Optional[str]:
    """Describe why value does not fit Config field `name`, or None if it does."""
    allowed = get_args(_FIELD_TYPES[name]) or (_FIELD_TYPES[name],)
    # bool is an int subclass; only bool fields take true/false
    if isinstance(value, bool):
        ok = bool in allowed
    elif isinstance(value, int) and float in allowed:
        ok = True
    else:
        ok = isinstance(value, allowed)
    if ok:
        return None

    expected = " or ".join("null" if t is type(None) else t.__name__ for t in allowed)
    return f"{name} must be {expected}, got {json.dumps(value)}"


def create_default_config() -> Config:
    """Create default configuration."""
    return Config(
        date_expression=None,
        month=1,
        day=1,
        hour=DEFAULT_HOUR,
        local_time=False,
        message_template=None,
        min_year=MIN_YEAR,
        max_year=MAX_YEAR,
        repository=None,
        owner=None,
        branch=None,
        username=None,
        create_repo=False,
        private=False,
        author_mode="self",
        author_name=None,
        author_email=None,
        api_url=API_URL,
        retry_attempts=4,
        retry_base_delay=1.0,
        dry_run=False,
        assume_yes=False,
    )


def validate_repository_name(name: str) -> str:
    """Check a GitHub repository name and return it trimmed."""
    trimmed = name.strip()
    if not trimmed:
        raise InvalidInput("repository name", name, "cannot be empty", "provide a repository name")
    if len(trimmed) > 100:
        raise InvalidInput("repository name", name, "too long (max 100 characters)")
    if trimmed.startswith("-") or trimmed.endswith("-"):
        raise InvalidInput("repository name", name, "cannot start or end with a hyphen")
    if not _REPO_NAME.match(trimmed):
        raise InvalidInput(
            "repository name",
            name,
            "contains invalid characters",
            "use only letters, numbers, hyphens, underscores and periods",
        )
    return trimmed


def validate_username(username: str) -> str:
    """Check a GitHub login and return it trimmed."""
    trimmed = username.strip()
    if not trimmed:
        raise InvalidInput("username", username, "cannot be empty", "provide your GitHub username")
    if len(trimmed) > 39:
        raise InvalidInput("username", username, "too long (max 39 characters)")
    if not _USERNAME.match(trimmed):
        raise InvalidInput("username", username, "can only contain letters, numbers and hyphens")
    if trimmed.startswith("-") or trimmed.endswith("-"):
        raise InvalidInput("username", username, "cannot start or end with a hyphen")
    return trimmed


def validate_branch_name(branch: str) -> str:
    """Check a branch name and return it trimmed."""
    trimmed = branch.strip()
    if not trimmed:
        raise InvalidInput("branch", branch, "cannot be empty", "omit --branch to use the default branch")
    if trimmed.startswith("-") or trimmed.endswith("-"):
        raise InvalidInput("branch", branch, "cannot start or end with a hyphen")
    if ".." in trimmed or any(c.isspace() for c in trimmed):
        raise InvalidInput("branch", branch, "cannot contain spaces or consecutive dots")
    return trimmed


def validate_email(email: str) -> str:
    """Basic shape check: one @, text on both sides, a dot in the domain."""
    trimmed = email.strip()
    if not trimmed:
        raise InvalidInput("email", email, "cannot be empty")
    if len(trimmed) > 254:
        raise InvalidInput("email", email, "too long (max 254 characters)")
    if trimmed.count("@") != 1:
        raise InvalidInput("email", email, "must contain exactly one @")
    local, domain = trimmed.split("@")
    if not local or not domain:
        raise InvalidInput("email", email, "must have text before and after @")
    if "." not in domain:
        raise InvalidInput("email", email, "domain must contain a dot")
    return trimmed


def load_config(path: Optional[Path], remembered: Optional[Dict[str, Any]] = None) -> Config:
    """Load configuration from file or create default.

    Precedence, lowest first: defaults, remembered session values, file.
    """
    default_dict = create_default_config().serialize()
    if remembered:
        default_dict.update(remembered)
    if path is None:
        return Config.deserialize(default_dict)

    try:
        with open(path, encoding="utf-8") as f:
            config_dict = json.load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except ValueError as e:
        raise ConfigurationError(f"Config file {path} is not valid JSON: {e}") from e

    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Config file {path} must contain a JSON object")

    # Merge with defaults for missing fields
    default_dict.update(config_dict)
    return Config.deserialize(default_dict)


def save_config(config: Config, path: Path) -> None:
    """Write the configuration as JSON; the token is not part of it."""
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config.serialize(), f, indent=2)


def session_defaults(session: SessionStore) -> Dict[str, Any]:
    """Remembered choices usable as configuration defaults."""
    remembered = {}
    for key in REMEMBERED_KEYS:
        value = session.get(key)
        if value is None:
            continue
        error = field_type_error(key, value)
        if error:
            logger.warning(f"Ignoring remembered {key}: {error}")
            continue
        remembered[key] = value
    return remembered


def apply_target_defaults(config: Config, session: SessionStore) -> Config:
    """Fill owner and branch remembered for config.repository, unless already set."""
    if not config.repository:
        return config
    for key, value in session.target_defaults(config.repository).items():
        if key in TARGET_KEYS and getattr(config, key) is None and not field_type_error(key, value):
            setattr(config, key, value)
    return config


CLI_FIELDS: List[str] = [
    "month",
    "day",
    "hour",
    "local_time",
    "message_template",
    "repository",
    "owner",
    "branch",
    "username",
    "create_repo",
    "private",
    "author_mode",
    "author_name",
    "author_email",
    "dry_run",
    "assume_yes",
]


def explicit_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Settings the user actually passed on the command line."""
    overrides = {}
    date_expression = args.year or args.years
    if date_expression:
        overrides["date_expression"] = date_expression

    for name in CLI_FIELDS:
        value = getattr(args, name, None)
        # store_true flags only override when set
        if value is None or value is False:
            continue
        overrides[name] = value
    return overrides


def apply_cli_overrides(config: Config, overrides: Dict[str, Any]) -> Config:
    """Apply command-line argument overrides to config."""
    for key, value in overrides.items():
        setattr(config, key, value)
    return config
