"""
Error taxonomy with exit codes and remediation hints
"""

from dataclasses import dataclass
from typing import Optional

EXIT_OK = 0
EXIT_EXECUTION = 1
EXIT_VALIDATION = 2
EXIT_AUTHENTICATION = 3
EXIT_NOT_FOUND = 4
EXIT_UNKNOWN_STATE = 5
EXIT_ABORTED = 6
EXIT_INTERRUPTED = 130

TOKEN_HELP_URL = "https://github.com/settings/tokens"


@dataclass
class ErrorRecord:
    """A failure captured in an OperationResult."""

    kind: str
    message: str
    stage: Optional[str] = None
    remediation: Optional[str] = None


class TimeTravelError(Exception):
    """Base class for every failure the tool reports to the user."""

    kind = "TimeTravelError"
    exit_code = EXIT_EXECUTION

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def to_record(self, stage: Optional[str] = None) -> ErrorRecord:
        return ErrorRecord(
            kind=self.kind,
            message=self.message,
            stage=stage,
            remediation=self.remediation,
        )

    def describe(self) -> str:
        """Render kind, cause and remediation for the terminal."""
        text = f"{self.kind}: {self.message}"
        if self.remediation:
            text += f"\n  hint: {self.remediation}"
        return text


class InvalidDateSpec(TimeTravelError):
    kind = "InvalidDateSpec"
    exit_code = EXIT_VALIDATION

    def __init__(self, raw: str, reason: str):
        shown = raw if len(raw) <= 40 else raw[:37] + "..."
        super().__init__(
            f"invalid date expression '{shown}': {reason}",
            "use a year (1990), a range (1990-1995) or a list (1990,1992,1994)",
        )
        self.raw = raw
        self.reason = reason


class InvalidInput(TimeTravelError):
    kind = "InvalidInput"
    exit_code = EXIT_VALIDATION

    def __init__(self, field: str, value: str, reason: str, suggestion: Optional[str] = None):
        super().__init__(f"invalid {field} '{value}': {reason}", suggestion)
        self.field = field
        self.value = value
        self.reason = reason


class ConfigurationError(TimeTravelError):
    kind = "ConfigurationError"
    exit_code = EXIT_VALIDATION


class AuthenticationFailed(TimeTravelError):
    kind = "AuthenticationFailed"
    exit_code = EXIT_AUTHENTICATION

    def __init__(self, message: str = "GitHub rejected the access token"):
        super().__init__(
            message,
            f"create a token with 'repo' scope at {TOKEN_HELP_URL} and pass it with --token or GITHUB_TOKEN",
        )


class InsufficientPermissions(TimeTravelError):
    kind = "InsufficientPermissions"
    exit_code = EXIT_AUTHENTICATION

    def __init__(self, message: str):
        super().__init__(
            message,
            f"grant the token 'repo' scope (or write access to the repository) at {TOKEN_HELP_URL}",
        )


class RepositoryNotFound(TimeTravelError):
    kind = "RepositoryNotFound"
    exit_code = EXIT_NOT_FOUND

    def __init__(self, repository: str, suggest_create: bool = True):
        remediation = "check the repository name and owner"
        if suggest_create:
            remediation = "repository not found; pass --create-repo to create it"
        super().__init__(f"repository '{repository}' does not exist", remediation)
        self.repository = repository
        self.suggest_create = suggest_create


class BranchNotFound(TimeTravelError):
    kind = "BranchNotFound"
    exit_code = EXIT_NOT_FOUND

    def __init__(self, branch: str, repository: str):
        super().__init__(
            f"branch '{branch}' does not exist in '{repository}'",
            "omit --branch to use the default branch, or push that branch first",
        )
        self.branch = branch
        self.repository = repository


class GitOperationFailed(TimeTravelError):
    kind = "GitOperationFailed"

    REMEDIATIONS = {
        "workspace": "check that git is installed and the repository is reachable",
        "commit": "check the git configuration of the author identity",
        "push": "verify the token can push and that the branch is not protected or diverged",
    }

    def __init__(self, stage: str, details: str):
        super().__init__(f"git {stage} failed: {details}", self.REMEDIATIONS.get(stage))
        self.stage = stage
        self.details = details


class NetworkError(TimeTravelError):
    kind = "NetworkError"

    def __init__(
        self,
        message: str,
        retryable: bool,
        status: Optional[int] = None,
        retry_after: Optional[float] = None,
    ):
        remediation = None if retryable else "check your connection or wait for the GitHub rate limit to reset"
        super().__init__(message, remediation)
        self.retryable = retryable
        self.status = status
        self.retry_after = retry_after


class OperationAborted(TimeTravelError):
    kind = "OperationAborted"
    exit_code = EXIT_ABORTED

    def __init__(self, message: str = "operation cancelled before any change was made"):
        super().__init__(message, "pass --yes to skip the confirmation in scripts")
