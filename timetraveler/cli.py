"""
Command line entry point
"""

import argparse
import os
import sys
from datetime import timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from timetraveler import __version__
from timetraveler.config import (
    Config,
    apply_cli_overrides,
    apply_target_defaults,
    explicit_overrides,
    load_config,
    save_config,
    session_defaults,
    validate_branch_name,
    validate_email,
    validate_repository_name,
    validate_username,
)
from timetraveler.context import GitContext, detect_context, get_git_config
from timetraveler.dates import Scheduler, build_plan, parse_date_spec, validate_hour
from timetraveler.display import Renderer
from timetraveler.errors import (
    EXIT_ABORTED,
    EXIT_AUTHENTICATION,
    EXIT_EXECUTION,
    EXIT_INTERRUPTED,
    EXIT_NOT_FOUND,
    EXIT_OK,
    EXIT_UNKNOWN_STATE,
    EXIT_VALIDATION,
    InvalidInput,
    TimeTravelError,
)
from timetraveler.executor import CommitPlanExecutor
from timetraveler.github import GitHubClient, RemoteGuard
from timetraveler.models import AuthorIdentity, OperationResult, PlanPreview, PushState
from timetraveler.retry import RetryPolicy
from timetraveler.safety import NonInteractivePrompter, Prompter, SafetyEnvelope, TerminalPrompter
from timetraveler.session import SessionStore

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")

EXIT_CODES_HELP = f"""\
exit codes:
  {EXIT_OK}    success
  {EXIT_EXECUTION}    execution failure (git, network or remote state)
  {EXIT_VALIDATION}    invalid input or configuration
  {EXIT_AUTHENTICATION}    authentication or permission failure
  {EXIT_NOT_FOUND}    repository or branch not found
  {EXIT_UNKNOWN_STATE}    push outcome unknown, verify the remote
  {EXIT_ABORTED}    aborted at the confirmation prompt
  {EXIT_INTERRUPTED}  interrupted
"""

ClientFactory = Callable[[str, str], GitHubClient]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-timetraveler",
        description="Git Time Traveler: create backdated commits that show early years on your GitHub profile",
        epilog=EXIT_CODES_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"git-timetraveler {__version__}")

    # Date arguments
    dates = parser.add_mutually_exclusive_group()
    dates.add_argument("--year", help="Year expression: 1990, 1990-1995 or 1990,1992,1994")
    dates.add_argument("--years", help="Same grammar as --year")
    parser.add_argument("--month", type=int, help="Month of each commit (default: 1)")
    parser.add_argument("--day", type=int, help="Day of each commit (default: 1)")
    parser.add_argument("--hour", type=int, help="Hour of each commit, 0-23 (default: 18)")
    parser.add_argument(
        "--local-time", action="store_true", dest="local_time", help="Interpret the hour in local time instead of UTC"
    )
    parser.add_argument(
        "--message", dest="message_template", help="Commit message template, '{year}' is substituted"
    )

    # Repository arguments
    parser.add_argument("--repo", dest="repository", help="Target repository name")
    parser.add_argument("--owner", help="Repository owner (default: the token's user)")
    parser.add_argument("--branch", help="Target branch (default: the repository default branch)")
    parser.add_argument("--create-repo", action="store_true", dest="create_repo", help="Create the repository if missing")
    parser.add_argument("--private", action="store_true", help="Make a created repository private")

    # Identity arguments
    parser.add_argument("-u", "--username", help="GitHub username")
    parser.add_argument("-t", "--token", help="GitHub token (default: $GITHUB_TOKEN or $GH_TOKEN)")
    parser.add_argument(
        "--author",
        dest="author_mode",
        choices=["self", "traveler"],
        help="Commit as yourself or as the synthetic 'Git Time Traveler' identity",
    )
    parser.add_argument("--author-name", dest="author_name", help="Explicit author name")
    parser.add_argument("--author-email", dest="author_email", help="Explicit author email")

    # Configuration
    parser.add_argument("--config", type=Path, help="Load configuration from JSON")
    parser.add_argument("--save-config", type=Path, dest="save_config", help="Save configuration to JSON")
    parser.add_argument("--no-session", action="store_true", dest="no_session", help="Do not read or remember choices")

    # Runtime options
    parser.add_argument("--dry-run", action="store_true", dest="dry_run", help="Show the plan without changing anything")
    parser.add_argument("-y", "--yes", action="store_true", dest="assume_yes", help="Skip the confirmation prompt")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More log output (-vv for debug)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log errors")
    return parser


def configure_logging(verbose: int = 0, quiet: bool = False) -> None:
    """Route loguru output to stderr at the requested level."""
    if quiet:
        level = "ERROR"
    elif verbose >= 2:
        level = "DEBUG"
    elif verbose == 1:
        level = "INFO"
    else:
        level = "WARNING"

    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        level=level,
        colorize=None,
    )


def resolve_token(explicit: Optional[str], prompter: Prompter) -> str:
    """Token from the flag, the environment, or a hidden prompt. Never stored."""
    token = explicit
    if not token:
        for name in TOKEN_ENV_VARS:
            if os.environ.get(name):
                token = os.environ[name]
                logger.debug(f"Using token from ${name}")
                break
    if not token:
        token = prompter.ask_secret("GitHub personal access token")

    token = (token or "").strip()
    if not token:
        raise InvalidInput("token", "***", "cannot be empty", "pass --token or set GITHUB_TOKEN")
    return token


def resolve_author(config: Config, guard: RemoteGuard) -> AuthorIdentity:
    """Pick the identity recorded on every commit."""
    if config.author_name and config.author_email:
        return AuthorIdentity(config.author_name, config.author_email)
    if config.author_mode == "traveler":
        return AuthorIdentity.traveler()

    git_name = get_git_config("user.name")
    git_email = get_git_config("user.email")
    if git_name and git_email:
        logger.info(f"Using git identity {git_name} <{git_email}>")
        return AuthorIdentity(git_name, git_email)

    # Fall back to the GitHub account so the graph still counts the commits
    login = guard.authenticate()
    user = guard.user
    name = user.get("name") or login
    email = user.get("email") or f"{user.get('id', 0)}+{login}@users.noreply.github.com"
    return AuthorIdentity(name, email)


def interview(
    config: Config,
    prompter: Prompter,
    context: GitContext,
    explicit: Dict[str, Any],
    recent_years: Optional[List[int]] = None,
) -> Config:
    """Ask for everything not given on the command line.

    The Git remote of the current directory and the remembered years are
    offered as defaults; nothing detected is used without being shown.
    """
    default_date = str(recent_years[0]) if recent_years else None
    config.date_expression = str(prompter.ask_date(default_date))

    remote = context.github_remote()
    if "repository" not in explicit:
        suggestion = remote[1] if remote else config.repository
        config.repository = validate_repository_name(prompter.ask_text("Repository name", suggestion))

    if remote and config.owner is None and remote[1] == config.repository:
        config.owner = prompter.ask_text("Repository owner", remote[0])

    if "branch" not in explicit:
        config.branch = prompter.ask_optional("Branch (leave empty for the repository default)") or config.branch

    if "author_mode" not in explicit and not config.author_name:
        as_self = prompter.confirm("Commit as yourself? (no: as 'Git Time Traveler')", config.author_mode == "self")
        config.author_mode = "self" if as_self else "traveler"

    if "hour" not in explicit:
        raw = prompter.ask_text("Hour of day for each commit (0-23)", str(config.hour))
        try:
            config.hour = validate_hour(int(raw))
        except ValueError as e:
            raise InvalidInput("hour", raw, "must be a whole number", "use 24-hour format (0-23)") from e

    return config


def _default_client(token: str, api_url: str) -> GitHubClient:
    return GitHubClient(token, api_url=api_url)


def run(
    argv: Optional[List[str]] = None,
    prompter: Optional[Prompter] = None,
    client_factory: ClientFactory = _default_client,
    executor: Optional[CommitPlanExecutor] = None,
    session: Optional[SessionStore] = None,
    renderer: Optional[Renderer] = None,
) -> int:
    """Run the tool and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose, args.quiet)
    renderer = renderer or Renderer()

    try:
        if args.no_session:
            session = None
        elif session is None:
            session = SessionStore()
        remembered = session_defaults(session) if session is not None else None

        config = load_config(args.config, remembered)
        explicit = explicit_overrides(args)
        config = apply_cli_overrides(config, explicit)
        config.validate()

        if prompter is None:
            if sys.stdin.isatty():
                prompter = TerminalPrompter(config.min_year, config.max_year)
            else:
                prompter = NonInteractivePrompter(config.min_year, config.max_year)

        # Without a date on the command line, a terminal user is walked through the choices
        if not config.date_expression and prompter.interactive:
            recent = session.recent_years if session is not None else None
            config = interview(config, prompter, detect_context(), explicit, recent)

        # Dates fail fast, before any remote contact
        if config.date_expression:
            spec = parse_date_spec(config.date_expression, config.min_year, config.max_year)
        else:
            spec = prompter.ask_date()
        config.date_expression = str(spec)
        scheduler = Scheduler(
            hour=config.hour,
            month=config.month,
            day=config.day,
            tz=None if config.local_time else timezone.utc,
            message_template=config.message_template,
        )
        scheduler.schedule(spec)

        config.repository = validate_repository_name(
            config.repository or prompter.ask_text("Repository name", None)
        )
        if session is not None:
            config = apply_target_defaults(config, session)
        if config.username:
            config.username = validate_username(config.username)
        if config.branch:
            config.branch = validate_branch_name(config.branch)
        if config.author_email:
            config.author_email = validate_email(config.author_email)

        if args.save_config:
            save_config(config, args.save_config)
            print(f"Configuration saved to {args.save_config}")

        token = resolve_token(args.token, prompter)
        retry = RetryPolicy(max_attempts=config.retry_attempts, base_delay=config.retry_base_delay)

        with client_factory(token, config.api_url) as client:
            guard = RemoteGuard(client, retry)
            login = guard.authenticate()
            if config.username and config.username.lower() != login.lower():
                logger.warning(f"Token belongs to {login}, not {config.username}")

            author = resolve_author(config, guard)
            plan = build_plan(
                spec,
                scheduler,
                config.repository,
                author,
                owner=config.owner,
                branch=config.branch,
            )
            envelope = SafetyEnvelope(
                guard,
                executor or CommitPlanExecutor(),
                prompter,
                dry_run=config.dry_run,
                assume_yes=config.assume_yes,
                token=token,
                on_preview=lambda preview: print(renderer.render_preview(preview, config.dry_run) + "\n"),
            )
            outcome = envelope.run(plan, create_if_missing=config.create_repo, private=config.private)
    except TimeTravelError as e:
        print(renderer.render_error(e), file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED

    if isinstance(outcome, PlanPreview):
        print("Dry run complete. Run again without --dry-run to apply.")
        return EXIT_OK

    print(renderer.render_result(outcome))
    return _finish(outcome, config, login, session)


def _finish(result: OperationResult, config: Config, login: str, session: Optional[SessionStore]) -> int:
    if result.succeeded:
        if session is not None:
            _remember(session, config, login)
        owner = config.owner or login
        print(f"\nCheck your profile: https://github.com/{owner}")
        return EXIT_OK
    if result.push_state == PushState.UNKNOWN:
        return EXIT_UNKNOWN_STATE
    if result.cancelled:
        return EXIT_INTERRUPTED
    return EXIT_EXECUTION


def _remember(session: SessionStore, config: Config, login: str) -> None:
    session.remember(
        {
            "repository": config.repository,
            "owner": config.owner,
            "branch": config.branch,
            "author_mode": config.author_mode,
            "hour": config.hour,
            "username": login,
        },
        years=parse_date_spec(config.date_expression, config.min_year, config.max_year).years(),
    )
    try:
        session.save()
    except OSError as e:
        logger.warning(f"Could not save session: {e}")


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
