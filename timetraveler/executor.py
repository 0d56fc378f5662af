"""
Executes a commit plan in a transient workspace and publishes it with one push
"""

import base64
import os
import shutil
import signal
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from loguru import logger

from timetraveler.errors import ErrorRecord, GitOperationFailed
from timetraveler.models import (
    AuthorIdentity,
    CommitPlan,
    CreatedCommit,
    OperationResult,
    PushState,
    RepositoryTarget,
    ScheduledCommit,
)

WORKSPACE_PREFIX = "git-timetraveler-"
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


class ExecutionState(str, Enum):
    IDLE = "idle"
    WORKSPACE_READY = "workspace_ready"
    COMMITTING = "committing"
    PUSHING = "pushing"
    DONE = "done"
    FAILED = "failed"


class Workspace:
    """Temporary directory holding one working tree, removed on exit."""

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = base_dir
        self.root: Optional[Path] = None

    def __enter__(self) -> "Workspace":
        try:
            self.root = Path(tempfile.mkdtemp(prefix=WORKSPACE_PREFIX, dir=self.base_dir))
        except OSError as e:
            raise GitOperationFailed("workspace", f"cannot create temporary directory: {e}") from e
        logger.debug(f"Workspace created at {self.root}")
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()

    @property
    def repo_path(self) -> Path:
        return self.root / "repo"

    def cleanup(self) -> None:
        """Remove the workspace directory (best-effort)."""
        if self.root is None or not self.root.exists():
            return
        try:
            shutil.rmtree(self.root)
            logger.debug(f"Workspace {self.root} removed")
        except OSError as e:
            logger.warning(f"Could not remove workspace {self.root}: {e}")


@contextmanager
def sigterm_as_interrupt() -> Iterator[None]:
    """Route SIGTERM through the KeyboardInterrupt cleanup path."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        raise KeyboardInterrupt(f"received signal {signum}")

    previous = signal.signal(signal.SIGTERM, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGTERM, previous)


class CommitPlanExecutor:
    """Creates the planned backdated commits and pushes them once."""

    def __init__(self, git: str = "git", workspace_dir: Optional[Path] = None):
        self.git = git
        self.workspace_dir = workspace_dir
        self.state = ExecutionState.IDLE
        self._secrets: List[str] = []
        self._auth_env: Dict[str, str] = {}

    def execute(
        self, plan: CommitPlan, target: RepositoryTarget, token: Optional[str] = None
    ) -> OperationResult:
        """Run the plan against a resolved target; never raises for git failures."""
        if not target.remote_exists or not target.branch or not target.clone_url:
            raise ValueError(f"target {target.full_name} has not been resolved by the guard")

        result = OperationResult()
        self._auth_env = self._credentials_env(target.clone_url, token)
        self._secrets = [secret for secret in (token, self._auth_env.get("GIT_CONFIG_VALUE_0")) if secret]
        self.state = ExecutionState.IDLE
        stage = "workspace"

        try:
            with sigterm_as_interrupt(), Workspace(self.workspace_dir) as workspace:
                result.workspace_path = str(workspace.root)
                repo = self._prepare(workspace, plan.author, target)
                self._transition(ExecutionState.WORKSPACE_READY)

                stage = "commit"
                total = len(plan.commits)
                for index, commit in enumerate(plan.commits):
                    self._transition(ExecutionState.COMMITTING, f"{index + 1}/{total}")
                    commit_id = self._create_commit(repo, plan.author, commit)
                    result.commits_created.append(
                        CreatedCommit(
                            year=commit.year,
                            timestamp=commit.author_timestamp,
                            commit_id=commit_id,
                        )
                    )

                stage = "push"
                self._transition(ExecutionState.PUSHING)
                self._push(repo, target.branch)
                result.push_state = PushState.PUSHED
                self._transition(ExecutionState.DONE)
        except GitOperationFailed as e:
            if stage == "push":
                result.push_state = PushState.FAILED
            result.errors.append(e.to_record(stage))
            self._transition(ExecutionState.FAILED, e.message)
        except KeyboardInterrupt:
            result.cancelled = True
            if stage == "push":
                result.push_state = PushState.UNKNOWN
                result.errors.append(
                    ErrorRecord(
                        kind="Cancelled",
                        message="interrupted while pushing; the remote may or may not have the commits",
                        stage=stage,
                        remediation=f"check https://github.com/{target.full_name} before running again",
                    )
                )
            else:
                result.errors.append(
                    ErrorRecord(
                        kind="Cancelled",
                        message="interrupted before the push; nothing was published",
                        stage=stage,
                    )
                )
            self._transition(ExecutionState.FAILED, "interrupted")

        return result

    def _transition(self, state: ExecutionState, detail: str = "") -> None:
        self.state = state
        logger.debug(f"Executor -> {state.value} {detail}".rstrip())

    def _prepare(
        self, workspace: Workspace, author: AuthorIdentity, target: RepositoryTarget
    ) -> Path:
        """Clone the branch if the remote has history, otherwise start empty."""
        repo = workspace.repo_path
        url = target.clone_url

        if target.has_history:
            logger.info(f"Cloning {target.full_name} ({target.branch})")
            self._run_git(
                ["clone", "--branch", target.branch, "--single-branch", url, str(repo)],
                cwd=workspace.root,
                stage="workspace",
            )
        else:
            logger.info(f"Initializing empty repository for {target.full_name}")
            repo.mkdir()
            self._run_git(["init"], cwd=repo, stage="workspace")
            self._run_git(
                ["symbolic-ref", "HEAD", f"refs/heads/{target.branch}"], cwd=repo, stage="workspace"
            )
            self._run_git(["remote", "add", "origin", url], cwd=repo, stage="workspace")

        self._run_git(["config", "user.name", author.name], cwd=repo, stage="workspace")
        self._run_git(["config", "user.email", author.email], cwd=repo, stage="workspace")
        return repo

    def _create_commit(self, repo: Path, author: AuthorIdentity, commit: ScheduledCommit) -> str:
        """Create a single commit with backdated timestamps and return its id."""
        try:
            (repo / commit.content.path).write_text(commit.content.body, encoding="utf-8")
        except OSError as e:
            raise GitOperationFailed("commit", f"cannot write {commit.content.path}: {e}") from e

        self._run_git(["add", commit.content.path], cwd=repo, stage="commit")

        env = os.environ.copy()
        env.update(
            {
                "GIT_AUTHOR_NAME": author.name,
                "GIT_AUTHOR_EMAIL": author.email,
                "GIT_AUTHOR_DATE": commit.author_timestamp.strftime(TIMESTAMP_FORMAT),
                "GIT_COMMITTER_NAME": author.name,
                "GIT_COMMITTER_EMAIL": author.email,
                "GIT_COMMITTER_DATE": commit.committer_timestamp.strftime(TIMESTAMP_FORMAT),
            }
        )

        # Re-running a year still yields a new commit
        self._run_git(["commit", "--allow-empty", "-m", commit.message], cwd=repo, stage="commit", env=env)
        commit_id = self._run_git(["rev-parse", "HEAD"], cwd=repo, stage="commit")
        logger.info(f"Committed {commit.year} as {commit_id[:10]}")
        return commit_id

    def _push(self, repo: Path, branch: str) -> None:
        logger.info(f"Pushing {branch}")
        self._run_git(["push", "origin", f"HEAD:refs/heads/{branch}"], cwd=repo, stage="push")

    def _credentials_env(self, clone_url: str, token: Optional[str]) -> Dict[str, str]:
        """Environment carrying the token as an HTTP header, so it never appears on argv.

        Git reads GIT_CONFIG_COUNT/KEY/VALUE since 2.31.
        """
        if not token or not clone_url.startswith("https://"):
            return {}
        basic = base64.b64encode(f"x-access-token:{token}".encode()).decode("ascii")
        return {
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
        }

    def _redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, "***")
        return text

    def _run_git(self, args: List[str], cwd: Path, stage: str, env: Optional[Dict[str, str]] = None) -> str:
        """Run a Git command in `cwd`, raising GitOperationFailed on error."""
        if env is None:
            env = os.environ.copy()
        env["GIT_TERMINAL_PROMPT"] = "0"
        env.update(self._auth_env)

        cmd = [self.git, "-c", "commit.gpgsign=false", *args]
        try:
            completed = subprocess.run(cmd, cwd=cwd, env=env, check=True, capture_output=True, text=True)
        except FileNotFoundError:
            raise GitOperationFailed(stage, f"'{self.git}' executable not found") from None
        except subprocess.CalledProcessError as e:
            details = (e.stderr or e.stdout or "").strip() or f"exit status {e.returncode}"
            # Git may echo the configured header
            raise GitOperationFailed(stage, self._redact(details)) from None

        return completed.stdout.strip()
