import json
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from timetraveler.github import GitHubClient
from timetraveler.retry import RetryPolicy


class FakeGitHub:
    """In-memory GitHub API served through httpx.MockTransport."""

    def __init__(self, login: str = "octocat", scopes: Optional[str] = "repo, workflow"):
        self.login = login
        self.scopes = scopes
        self.user_status = 200
        self.repos: Dict[str, dict] = {}
        self.branches: Dict[str, List[str]] = {}
        self.requests: List[Tuple[str, str]] = []
        self.queued: Dict[Tuple[str, str], List[httpx.Response]] = {}

    def add_repo(
        self,
        full_name: str,
        branches: Tuple[str, ...] = (),
        default_branch: str = "main",
        push: bool = True,
    ) -> dict:
        repo = {
            "full_name": full_name,
            "default_branch": default_branch,
            "private": False,
            "clone_url": f"https://github.com/{full_name}.git",
            "permissions": {"push": push},
        }
        self.repos[full_name] = repo
        self.branches[full_name] = list(branches)
        return repo

    def queue(self, method: str, path: str, *responses: httpx.Response) -> None:
        self.queued.setdefault((method, path), []).extend(responses)

    @property
    def posts(self) -> List[str]:
        return [path for method, path in self.requests if method == "POST"]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))

        queued = self.queued.get((method, path))
        if queued:
            return queued.pop(0)

        if path == "/user":
            return self._user()

        parts = path.strip("/").split("/")
        if method == "POST" and (path == "/user/repos" or (parts[0] == "orgs" and parts[-1] == "repos")):
            owner = self.login if path == "/user/repos" else parts[1]
            return self._create(owner, request)

        if parts[0] == "repos" and len(parts) >= 3:
            full_name = f"{parts[1]}/{parts[2]}"
            if full_name not in self.repos:
                return httpx.Response(404, json={"message": "Not Found"})
            if len(parts) == 3:
                return httpx.Response(200, json=self.repos[full_name])
            if len(parts) == 4 and parts[3] == "branches":
                return httpx.Response(200, json=[{"name": b} for b in self.branches[full_name]])
            if len(parts) == 5 and parts[3] == "branches":
                if parts[4] in self.branches[full_name]:
                    return httpx.Response(200, json={"name": parts[4]})
                return httpx.Response(404, json={"message": "Branch not found"})

        return httpx.Response(404, json={"message": "Not Found"})

    def _user(self) -> httpx.Response:
        if self.user_status != 200:
            return httpx.Response(self.user_status, json={"message": "Bad credentials"})
        headers = {"x-oauth-scopes": self.scopes} if self.scopes is not None else {}
        return httpx.Response(
            200,
            json={"login": self.login, "id": 583231, "name": None, "email": None},
            headers=headers,
        )

    def _create(self, owner: str, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        full_name = f"{owner}/{payload['name']}"
        if full_name in self.repos:
            return httpx.Response(
                422,
                json={
                    "message": "Repository creation failed.",
                    "errors": [
                        {"resource": "Repository", "field": "name", "message": "name already exists on this account"}
                    ],
                },
            )
        repo = self.add_repo(full_name)
        repo["private"] = payload["private"]
        return httpx.Response(201, json=repo)


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def github_client(fake_github):
    with GitHubClient("ghp_test_token", transport=httpx.MockTransport(fake_github)) as client:
        yield client


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def retry_policy(sleeps):
    return RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0, sleep=sleeps.append)
