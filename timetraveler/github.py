"""
GitHub REST client and the remote repository lifecycle guard
"""

import time
from typing import Any, Dict, List, Optional, Tuple

import httpx
from loguru import logger

from timetraveler import __version__
from timetraveler.errors import (
    AuthenticationFailed,
    BranchNotFound,
    InsufficientPermissions,
    NetworkError,
    RepositoryNotFound,
)
from timetraveler.models import CommitPlan, RepositoryTarget
from timetraveler.retry import RetryPolicy

API_URL = "https://api.github.com"
DEFAULT_BRANCH = "main"
REPO_DESCRIPTION = "Created by git-timetraveler"
PUSH_SCOPES = {"repo", "public_repo"}


class GitHubClient:
    """Thin GitHub API client over httpx.

    Transient failures (timeouts, connection errors, 5xx, rate limiting) raise
    a retryable NetworkError so callers can wrap calls in a RetryPolicy.
    """

    def __init__(
        self,
        token: str,
        api_url: str = API_URL,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._token = token
        self.api_url = api_url
        self._client = httpx.Client(
            base_url=api_url,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "User-Agent": f"git-timetraveler/{__version__}",
            },
            timeout=timeout,
            transport=transport,
        )

    def __repr__(self) -> str:
        return f"GitHubClient(api_url={self.api_url!r})"

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request, mapping transport and throttling failures to NetworkError."""
        logger.debug(f"GitHub API {method} {path}")
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out", retryable=True) from e
        except httpx.TransportError as e:
            raise NetworkError(f"cannot reach GitHub API: {e}", retryable=True) from e

        if _is_rate_limited(response):
            raise NetworkError(
                "GitHub API rate limit exceeded",
                retryable=True,
                status=response.status_code,
                retry_after=_retry_after(response),
            )
        if response.status_code >= 500:
            raise NetworkError(
                f"GitHub API returned {response.status_code} for {method} {path}",
                retryable=True,
                status=response.status_code,
            )
        return response

    def get_user(self) -> Tuple[Dict[str, Any], List[str]]:
        """Return the authenticated user and the token's OAuth scopes."""
        response = self.request("GET", "/user")
        if response.status_code == 401:
            raise AuthenticationFailed()
        _raise_for_status(response, "read the authenticated user")

        header = response.headers.get("x-oauth-scopes")
        scopes = [s.strip() for s in header.split(",") if s.strip()] if header else []
        return response.json(), scopes

    def get_repository(self, owner: str, name: str) -> Optional[Dict[str, Any]]:
        """Return repository metadata, or None when it does not exist."""
        response = self.request("GET", f"/repos/{owner}/{name}")
        if response.status_code == 404:
            return None
        _raise_for_status(response, f"read repository {owner}/{name}")
        return response.json()

    def has_branches(self, owner: str, name: str) -> bool:
        """True when the repository has at least one branch (i.e. history)."""
        response = self.request("GET", f"/repos/{owner}/{name}/branches", params={"per_page": 1})
        # Empty repositories answer 404 on some endpoints, [] on others
        if response.status_code == 404:
            return False
        _raise_for_status(response, f"list branches of {owner}/{name}")
        return bool(response.json())

    def branch_exists(self, owner: str, name: str, branch: str) -> bool:
        response = self.request("GET", f"/repos/{owner}/{name}/branches/{branch}")
        if response.status_code == 404:
            return False
        _raise_for_status(response, f"read branch {branch} of {owner}/{name}")
        return True

    def create_repository(
        self,
        name: str,
        private: bool = False,
        org: Optional[str] = None,
        description: str = REPO_DESCRIPTION,
    ) -> Optional[Dict[str, Any]]:
        """Create an empty repository. Returns None if the name is already taken."""
        path = f"/orgs/{org}/repos" if org else "/user/repos"
        payload = {
            "name": name,
            "private": private,
            "description": description,
            "auto_init": False,
        }
        response = self.request("POST", path, json=payload)
        if response.status_code == 422 and _already_exists(response):
            return None
        _raise_for_status(response, f"create repository {name}")
        return response.json()


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    if value:
        try:
            return float(value)
        except ValueError:
            return None

    reset = response.headers.get("x-ratelimit-reset")
    if reset:
        try:
            return max(0.0, float(reset) - time.time())
        except ValueError:
            return None
    return None


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("message", response.text)
    except ValueError:
        return response.text


def _already_exists(response: httpx.Response) -> bool:
    try:
        body = response.json()
    except ValueError:
        return False
    texts = [body.get("message", "")]
    texts += [err.get("message", "") for err in body.get("errors", []) if isinstance(err, dict)]
    return any("already exists" in text for text in texts)


def _raise_for_status(response: httpx.Response, action: str) -> None:
    status = response.status_code
    if status < 400:
        return
    if status == 401:
        raise AuthenticationFailed(f"GitHub rejected the access token while trying to {action}")
    if status == 403:
        raise InsufficientPermissions(f"not allowed to {action}: {_error_message(response)}")
    raise NetworkError(
        f"failed to {action}: GitHub returned {status} ({_error_message(response)})",
        retryable=False,
        status=status,
    )


class RemoteGuard:
    """Validates credentials and confirms, creates and resolves the target repository."""

    def __init__(self, client: GitHubClient, retry_policy: Optional[RetryPolicy] = None):
        self.client = client
        self.retry = retry_policy or RetryPolicy()
        self.login: Optional[str] = None
        self.user: Dict[str, Any] = {}

    def authenticate(self) -> str:
        """Check the token can read the API and return the login it belongs to."""
        if self.login:
            return self.login

        user, scopes = self.retry.call(self.client.get_user, "token validation")
        # Fine-grained tokens send no scope header
        if scopes and not PUSH_SCOPES.intersection(scopes):
            raise InsufficientPermissions(
                f"token scopes ({', '.join(scopes)}) do not allow pushing to repositories"
            )

        self.user = user
        self.login = user["login"]
        logger.info(f"Authenticated as {self.login}")
        return self.login

    def inspect(self, plan: CommitPlan, create_if_missing: bool, private: bool = False) -> RepositoryTarget:
        """Read-only resolution of the target; never creates anything."""
        login = self.authenticate()
        target = RepositoryTarget(
            owner=plan.owner or login,
            name=plan.repository,
            branch=plan.branch,
            private=private,
        )

        repo = self.retry.call(
            lambda: self.client.get_repository(target.owner, target.name),
            "repository lookup",
        )
        if repo is None:
            if not create_if_missing:
                raise RepositoryNotFound(target.full_name, suggest_create=True)

            logger.info(f"Repository {target.full_name} does not exist and will be created")
            target.will_create = True
            target.default_branch_resolved = plan.branch is None
            target.branch = plan.branch or DEFAULT_BRANCH
            target.clone_url = f"https://github.com/{target.full_name}.git"
            return target

        self._load_existing(target, repo, plan.branch)
        return target

    def ensure(self, target: RepositoryTarget) -> RepositoryTarget:
        """Create the repository when inspection found it missing."""
        if target.remote_exists:
            return target
        if not target.will_create:
            raise RepositoryNotFound(target.full_name, suggest_create=True)

        # Logins are case-insensitive
        org = target.owner if target.owner.lower() != self.authenticate().lower() else None
        pinned = None if target.default_branch_resolved else target.branch

        repo = self.retry.call(
            lambda: self.client.create_repository(target.name, private=target.private, org=org),
            "repository creation",
        )
        if repo is None:
            # Lost a race with someone creating the same name
            logger.info(f"Repository {target.full_name} already exists, using it")
            repo = self.retry.call(
                lambda: self.client.get_repository(target.owner, target.name),
                "repository lookup",
            )
            if repo is None:
                raise RepositoryNotFound(target.full_name, suggest_create=False)
            target.will_create = False
            self._load_existing(target, repo, pinned)
            return target

        logger.info(f"Created repository {target.full_name}")
        target.created = True
        target.will_create = False
        target.remote_exists = True
        target.has_history = False
        target.clone_url = repo.get("clone_url", target.clone_url)
        target.private = repo.get("private", target.private)
        if pinned is None:
            target.branch = repo.get("default_branch") or DEFAULT_BRANCH
            target.default_branch_resolved = True
        return target

    def _load_existing(self, target: RepositoryTarget, repo: Dict[str, Any], pinned: Optional[str]) -> None:
        target.remote_exists = True
        target.clone_url = repo.get("clone_url") or f"https://github.com/{target.full_name}.git"
        target.private = repo.get("private", target.private)

        permissions = repo.get("permissions") or {}
        if permissions.get("push") is False:
            raise InsufficientPermissions(f"no write access to {target.full_name}")

        target.has_history = self.retry.call(
            lambda: self.client.has_branches(target.owner, target.name),
            "branch listing",
        )
        self._resolve_branch(target, repo, pinned)

    def _resolve_branch(self, target: RepositoryTarget, repo: Dict[str, Any], pinned: Optional[str]) -> None:
        if pinned is None:
            target.branch = repo.get("default_branch") or DEFAULT_BRANCH
            target.default_branch_resolved = True
            logger.debug(f"Using default branch {target.branch}")
            return

        target.branch = pinned
        target.default_branch_resolved = False
        if not target.has_history:
            # The push creates it
            return

        exists = self.retry.call(
            lambda: self.client.branch_exists(target.owner, target.name, pinned),
            "branch lookup",
        )
        if not exists:
            raise BranchNotFound(pinned, target.full_name)
