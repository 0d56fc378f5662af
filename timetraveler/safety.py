"""
Dry-run and confirmation gate around the guard and executor
"""

import getpass
from typing import Callable, Optional, Protocol, Union

from loguru import logger

from timetraveler.dates import MAX_YEAR, MIN_YEAR, DateSpec, parse_date_spec
from timetraveler.errors import InvalidDateSpec, InvalidInput, OperationAborted
from timetraveler.executor import CommitPlanExecutor
from timetraveler.github import RemoteGuard
from timetraveler.models import CommitPlan, OperationResult, PlanPreview


class Prompter(Protocol):
    """Source of answers, whether a person at a terminal or a script."""

    interactive: bool

    def ask_date(self, default: Optional[str] = None) -> DateSpec: ...

    def ask_text(self, question: str, default: Optional[str] = None) -> str: ...

    def ask_optional(self, question: str) -> Optional[str]: ...

    def ask_secret(self, question: str) -> str: ...

    def confirm(self, question: str, default: bool = False) -> bool: ...


class TerminalPrompter:
    """Asks questions on stdin/stdout."""

    interactive = True

    def __init__(self, min_year: int = MIN_YEAR, max_year: int = MAX_YEAR):
        self.min_year = min_year
        self.max_year = max_year

    def ask_date(self, default: Optional[str] = None) -> DateSpec:
        while True:
            raw = self.ask_text("Years to travel to (1990, 1990-1995 or 1990,1992)", default)
            try:
                return parse_date_spec(raw, self.min_year, self.max_year)
            except InvalidDateSpec as e:
                print(e.message)

    def ask_text(self, question: str, default: Optional[str] = None) -> str:
        suffix = f" [{default}]" if default else ""
        while True:
            response = input(f"{question}{suffix}: ").strip()
            if response:
                return response
            if default:
                return default
            print("A value is required.")

    def ask_optional(self, question: str) -> Optional[str]:
        """Free text where an empty answer means 'no value'."""
        return input(f"{question}: ").strip() or None

    def ask_secret(self, question: str) -> str:
        return getpass.getpass(f"{question}: ").strip()

    def confirm(self, question: str, default: bool = False) -> bool:
        """Prompt user for yes/no with default."""
        suffix = "([yes]/no)" if default else "(yes/[no])"

        while True:
            response = input(f"{question} {suffix}: ").strip().lower()
            if response == "":
                return default
            if response in ["yes", "y"]:
                return True
            if response in ["no", "n"]:
                return False
            print("Please answer 'yes' or 'no'.")


class NonInteractivePrompter:
    """Used when stdin is not a terminal: defaults only, never confirms."""

    interactive = False

    def __init__(self, min_year: int = MIN_YEAR, max_year: int = MAX_YEAR):
        self.min_year = min_year
        self.max_year = max_year

    def ask_date(self, default: Optional[str] = None) -> DateSpec:
        if default is None:
            raise InvalidDateSpec("", "no date given; pass --year or --years")
        return parse_date_spec(default, self.min_year, self.max_year)

    def ask_text(self, question: str, default: Optional[str] = None) -> str:
        if default is None:
            raise InvalidInput(question, "", "required but input is not interactive", "pass it on the command line")
        return default

    def ask_optional(self, question: str) -> Optional[str]:
        return None

    def ask_secret(self, question: str) -> str:
        raise InvalidInput(question, "", "required but input is not interactive", "pass --token or set GITHUB_TOKEN")

    def confirm(self, question: str, default: bool = False) -> bool:
        logger.warning("Confirmation required but input is not interactive; pass --yes to proceed")
        return False


class SafetyEnvelope:
    """Gates every mutating call behind dry-run and confirmation policies."""

    def __init__(
        self,
        guard: RemoteGuard,
        executor: CommitPlanExecutor,
        prompter: Prompter,
        dry_run: bool = False,
        assume_yes: bool = False,
        token: Optional[str] = None,
        on_preview: Optional[Callable[[PlanPreview], None]] = None,
    ):
        self.guard = guard
        self.executor = executor
        self.prompter = prompter
        self.dry_run = dry_run
        self.assume_yes = assume_yes
        self._token = token
        self.on_preview = on_preview

    def run(
        self, plan: CommitPlan, create_if_missing: bool = False, private: bool = False
    ) -> Union[PlanPreview, OperationResult]:
        """Preview the plan, or confirm and execute it."""
        target = self.guard.inspect(plan, create_if_missing, private=private)
        preview = PlanPreview(plan=plan, target=target)
        if self.on_preview:
            self.on_preview(preview)

        if self.dry_run:
            logger.info("Dry run: skipping repository creation, commits and push")
            return preview

        self._confirm(preview)
        self.guard.ensure(target)
        return self.executor.execute(plan, target, self._token)

    def _confirm(self, preview: PlanPreview) -> None:
        if self.assume_yes:
            logger.debug("Confirmation skipped (--yes)")
            return

        count = len(preview.plan.commits)
        action = "create and push to" if preview.would_create else "push to"
        question = f"Create {count} backdated commit(s) and {action} {preview.target.full_name}?"
        if not self.prompter.confirm(question, default=False):
            raise OperationAborted()
