import json
from datetime import datetime, timezone

import httpx
import pytest

from timetraveler import cli
from timetraveler.context import GitContext
from timetraveler.dates import parse_date_spec
from timetraveler.display import Renderer
from timetraveler.errors import ErrorRecord
from timetraveler.github import GitHubClient
from timetraveler.models import CreatedCommit, OperationResult, PushState
from timetraveler.session import SessionStore

TOKEN = "ghp_cliTestToken123"


class StubPrompter:
    interactive = False

    def __init__(self, confirm=True):
        self.answer = confirm
        self.confirmations = 0

    def ask_date(self, default=None):
        raise AssertionError("unexpected date prompt")

    def ask_text(self, question, default=None):
        raise AssertionError("unexpected text prompt")

    def ask_optional(self, question):
        raise AssertionError("unexpected optional prompt")

    def ask_secret(self, question):
        return ""

    def confirm(self, question, default=False):
        self.confirmations += 1
        return self.answer


class StubExecutor:
    def __init__(self, push_state=PushState.PUSHED):
        self.push_state = push_state
        self.calls = []

    def execute(self, plan, target, token=None):
        self.calls.append((plan, target, token))
        result = OperationResult(push_state=self.push_state)
        for commit in plan.commits:
            result.commits_created.append(
                CreatedCommit(year=commit.year, timestamp=commit.author_timestamp, commit_id="a" * 40)
            )
        if self.push_state == PushState.FAILED:
            result.errors.append(ErrorRecord("GitOperationFailed", "git push failed: rejected", "push"))
        if self.push_state == PushState.UNKNOWN:
            result.cancelled = True
            result.errors.append(ErrorRecord("Cancelled", "interrupted while pushing", "push"))
        return result


@pytest.fixture(autouse=True)
def no_git_identity(monkeypatch):
    monkeypatch.setattr(cli, "get_git_config", lambda key: None)
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.delenv("GH_TOKEN", raising=False)


@pytest.fixture
def session(tmp_path):
    return SessionStore(tmp_path / "session.json")


@pytest.fixture
def executor():
    return StubExecutor()


@pytest.fixture
def invoke(fake_github, session, executor):
    def run(*argv, prompter=None):
        return cli.run(
            list(argv),
            prompter=prompter or StubPrompter(),
            client_factory=lambda token, api_url: GitHubClient(
                token, api_url=api_url, transport=httpx.MockTransport(fake_github)
            ),
            executor=executor,
            session=session,
            renderer=Renderer(color=False),
        )

    return run


def test_successful_run_pushes_and_remembers_choices(invoke, fake_github, executor, session, capsys):
    fake_github.add_repo("octocat/history", branches=("main",))

    code = invoke("--years", "1990-1992", "--repo", "history", "--token", TOKEN, "--yes")

    assert code == 0
    plan, target, token = executor.calls[0]
    assert plan.years == [1990, 1991, 1992]
    assert target.branch == "main"
    assert token == TOKEN

    out = capsys.readouterr().out
    assert "Pushed 3 commit(s)" in out
    assert "https://github.com/octocat" in out

    saved = session.path.read_text()
    assert TOKEN not in saved
    assert json.loads(saved)["values"]["repository"] == "history"
    assert SessionStore(session.path).recent_years == [1990, 1991, 1992]


def test_invalid_date_fails_before_remote_contact(invoke, fake_github, capsys):
    code = invoke("--year", "1995-1990", "--repo", "history", "--token", TOKEN)

    assert code == 2
    assert fake_github.requests == []
    assert "InvalidDateSpec" in capsys.readouterr().err


def test_invalid_repository_name_is_validation_error(invoke, fake_github):
    assert invoke("--year", "1990", "--repo=-bad-", "--token", TOKEN) == 2
    assert fake_github.requests == []


def test_dry_run_changes_nothing(invoke, fake_github, executor, session, capsys):
    code = invoke("--year", "1990", "--repo", "history", "--create-repo", "--token", TOKEN, "--dry-run")

    assert code == 0
    assert fake_github.posts == []
    assert executor.calls == []
    assert not session.path.exists()
    out = capsys.readouterr().out
    assert "Dry run" in out
    assert "will be created" in out
    assert "1990-01-01 18:00:00 +0000" in out


def test_missing_repository_exit_code(invoke, fake_github):
    assert invoke("--year", "1990", "--repo", "history", "--token", TOKEN, "--yes") == 4
    assert fake_github.posts == []


def test_create_repo_flag_creates_repository(invoke, fake_github, executor):
    code = invoke("--year", "1990", "--repo", "history", "--create-repo", "--private", "--token", TOKEN, "--yes")

    assert code == 0
    assert fake_github.posts == ["/user/repos"]
    assert fake_github.repos["octocat/history"]["private"] is True


def test_rejected_token_exit_code(invoke, fake_github, executor):
    fake_github.user_status = 401

    assert invoke("--year", "1990", "--repo", "history", "--token", TOKEN, "--yes") == 3
    assert executor.calls == []


def test_declined_confirmation_exit_code(invoke, fake_github, executor):
    fake_github.add_repo("octocat/history", branches=("main",))
    prompter = StubPrompter(confirm=False)

    assert invoke("--year", "1990", "--repo", "history", "--token", TOKEN, prompter=prompter) == 6
    assert prompter.confirmations == 1
    assert executor.calls == []


def test_push_failure_exit_code(invoke, fake_github, executor, session, capsys):
    fake_github.add_repo("octocat/history", branches=("main",))
    executor.push_state = PushState.FAILED

    assert invoke("--year", "1990", "--repo", "history", "--token", TOKEN, "--yes") == 1
    assert "NOT published" in capsys.readouterr().out
    assert not session.path.exists()


def test_unknown_push_state_exit_code(invoke, fake_github, executor):
    fake_github.add_repo("octocat/history", branches=("main",))
    executor.push_state = PushState.UNKNOWN

    assert invoke("--year", "1990", "--repo", "history", "--token", TOKEN, "--yes") == 5


def test_token_from_environment(invoke, fake_github, executor, monkeypatch):
    fake_github.add_repo("octocat/history", branches=("main",))
    monkeypatch.setenv("GH_TOKEN", "ghp_fromEnv")

    assert invoke("--year", "1990", "--repo", "history", "--yes") == 0
    assert executor.calls[0][2] == "ghp_fromEnv"


def test_missing_token_is_validation_error(invoke, fake_github):
    assert invoke("--year", "1990", "--repo", "history", "--yes") == 2
    assert fake_github.requests == []


def test_author_falls_back_to_github_noreply(invoke, fake_github, executor):
    fake_github.add_repo("octocat/history", branches=("main",))

    invoke("--year", "1990", "--repo", "history", "--token", TOKEN, "--yes")

    author = executor.calls[0][0].author
    assert author.name == "octocat"
    assert author.email == "583231+octocat@users.noreply.github.com"


def test_traveler_author_mode(invoke, fake_github, executor):
    fake_github.add_repo("octocat/history", branches=("main",))

    invoke("--year", "1990", "--repo", "history", "--token", TOKEN, "--yes", "--author", "traveler")

    assert str(executor.calls[0][0].author) == "Git Time Traveler <timetraveler@example.com>"


def test_git_identity_is_preferred_for_self(invoke, fake_github, executor, monkeypatch):
    fake_github.add_repo("octocat/history", branches=("main",))
    identity = {"user.name": "Ada Lovelace", "user.email": "ada@example.com"}
    monkeypatch.setattr(cli, "get_git_config", identity.get)

    invoke("--year", "1990", "--repo", "history", "--token", TOKEN, "--yes")

    assert str(executor.calls[0][0].author) == "Ada Lovelace <ada@example.com>"


def test_session_supplies_remembered_repository(invoke, fake_github, executor, session):
    fake_github.add_repo("octocat/history", branches=("main",))
    session.set("repository", "history")

    assert invoke("--year", "1990", "--token", TOKEN, "--yes") == 0
    assert executor.calls[0][0].repository == "history"


def test_save_config_never_contains_token(invoke, fake_github, tmp_path):
    path = tmp_path / "saved.json"

    invoke("--year", "1990", "--repo", "history", "--token", TOKEN, "--dry-run", "--create-repo", "--save-config", str(path))

    saved = json.loads(path.read_text())
    assert saved["date_expression"] == "1990"
    assert saved["repository"] == "history"
    assert TOKEN not in path.read_text()


def test_commit_timestamps_use_requested_hour(invoke, fake_github, executor):
    fake_github.add_repo("octocat/history", branches=("main",))

    invoke("--year", "1990", "--hour", "6", "--month", "3", "--day", "4", "--repo", "history", "--token", TOKEN, "--yes")

    assert executor.calls[0][0].timestamps == [datetime(1990, 3, 4, 6, tzinfo=timezone.utc)]


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as excinfo:
        cli.run(["--version"])
    assert excinfo.value.code == 0
    assert "git-timetraveler" in capsys.readouterr().out


class InterviewPrompter:
    interactive = True

    def __init__(self, answers=None, branch=None, as_self=True):
        self.answers = answers or {}
        self.branch = branch
        self.as_self = as_self
        self.questions = []

    def ask_date(self, default=None):
        self.questions.append(("date", default))
        return parse_date_spec(self.answers.get("date", default or "1990"))

    def ask_text(self, question, default=None):
        self.questions.append((question, default))
        for prefix, answer in self.answers.items():
            if question.startswith(prefix):
                return answer
        return default

    def ask_optional(self, question):
        self.questions.append((question, None))
        return self.branch

    def ask_secret(self, question):
        return ""

    def confirm(self, question, default=False):
        if question.startswith("Commit as yourself"):
            return self.as_self
        return True


@pytest.fixture
def git_remote(monkeypatch):
    context = GitContext(
        in_repository=True,
        branch="feature",
        remotes={"upstream": "https://github.com/someone/else.git", "origin": "git@github.com:octocat/history.git"},
    )
    monkeypatch.setattr(cli, "detect_context", lambda: context)
    return context


def test_remembered_branch_only_applies_to_its_repository(invoke, fake_github, executor):
    fake_github.add_repo("octocat/alpha", branches=("main", "dev"))
    fake_github.add_repo("octocat/beta", branches=("main",))

    assert invoke("--year", "1990", "--repo", "alpha", "--branch", "dev", "--token", TOKEN, "--yes") == 0
    assert invoke("--year", "1990", "--repo", "beta", "--token", TOKEN, "--yes") == 0
    assert executor.calls[-1][1].full_name == "octocat/beta"
    assert executor.calls[-1][1].branch == "main"

    assert invoke("--year", "1991", "--repo", "alpha", "--token", TOKEN, "--yes") == 0
    assert executor.calls[-1][1].branch == "dev"


@pytest.mark.parametrize(
    "flags",
    [
        ["--branch", "my branch"],
        ["--branch", "a..b"],
        ["--branch=-x"],
        ["--author-name", "Ada", "--author-email", "not-an-email"],
        ["--username", "bad_name"],
        ["--username=-abc"],
    ],
)
def test_invalid_target_or_identity_is_validation_error(invoke, fake_github, flags):
    assert invoke("--year", "1990", "--repo", "history", "--token", TOKEN, "--yes", *flags) == 2
    assert fake_github.requests == []


def test_interview_suggests_github_remote_of_current_directory(invoke, fake_github, executor, git_remote):
    fake_github.add_repo("octocat/history", branches=("main",))
    prompter = InterviewPrompter(answers={"Hour": "7"}, as_self=False)

    assert invoke("--token", TOKEN, prompter=prompter) == 0

    plan, target, _ = executor.calls[0]
    assert ("Repository name", "history") in prompter.questions
    assert ("Repository owner", "octocat") in prompter.questions
    assert target.full_name == "octocat/history"
    assert target.branch == "main"
    assert str(plan.author) == "Git Time Traveler <timetraveler@example.com>"
    assert plan.timestamps == [datetime(1990, 1, 1, 7, tzinfo=timezone.utc)]


def test_interview_skips_questions_answered_by_flags(invoke, fake_github, executor, git_remote):
    fake_github.add_repo("octocat/history", branches=("main", "dev"))
    prompter = InterviewPrompter()

    assert invoke("--repo", "history", "--branch", "dev", "--hour", "9", "--token", TOKEN, prompter=prompter) == 0

    asked = [question for question, _ in prompter.questions]
    assert "Repository name" not in asked
    assert not any(question.startswith(("Branch", "Hour")) for question in asked)
    assert executor.calls[0][1].branch == "dev"


def test_interview_offers_most_recent_year(invoke, fake_github, executor, session, git_remote):
    fake_github.add_repo("octocat/history", branches=("main",))
    session.remember({"repository": "history"}, years=[1985, 1984])
    prompter = InterviewPrompter()

    assert invoke("--token", TOKEN, prompter=prompter) == 0
    assert ("date", "1985") in prompter.questions
    assert executor.calls[0][0].years == [1985]


def test_interview_rejects_non_numeric_hour(invoke, fake_github, git_remote):
    prompter = InterviewPrompter(answers={"Hour": "noon"})

    assert invoke("--token", TOKEN, prompter=prompter) == 2
    assert fake_github.requests == []
