"""
Terminal rendering of plans, previews and results
"""

import os
import sys
from typing import List, Optional

from timetraveler.errors import TimeTravelError
from timetraveler.models import OperationResult, PlanPreview, PushState


class Renderer:
    """Renders plans and results as plain or ANSI-styled text."""

    def __init__(self, color: Optional[bool] = None):
        if color is None:
            color = sys.stdout.isatty() and "NO_COLOR" not in os.environ
        self.color = color

    def render_preview(self, preview: PlanPreview, dry_run: bool) -> str:
        """Describe the target and list every planned commit with its timestamp."""
        plan = preview.plan
        target = preview.target
        title = "Dry run: nothing will be changed" if dry_run else "Time travel plan"
        lines = [self._bold(title + "\n")]

        if target.will_create:
            state = "will be created" + (" (private)" if target.private else "")
        elif target.has_history:
            state = "exists"
        else:
            state = "exists, empty"
        branch_note = " (default)" if target.default_branch_resolved else ""

        lines += [
            f"  Repository: {target.full_name} " + self._muted(f"[{state}]"),
            f"  Branch:     {target.branch}{branch_note}",
            f"  Author:     {plan.author}",
            "",
            self._bold("Commits\n"),
        ]
        for commit in plan.commits:
            stamp = commit.author_timestamp.strftime("%Y-%m-%d %H:%M:%S %z")
            lines.append(f"  {stamp}  {commit.message} " + self._muted(commit.content.path))

        lines += self._render_statistics(preview)
        return "\n".join(lines)

    def _render_statistics(self, preview: PlanPreview) -> List[str]:
        years = preview.plan.years
        return [
            "",
            self._bold("Statistics\n"),
            f"  Total commits: {len(years)}",
            f"  Years covered: {years[0]}-{years[-1]}",
            "  Pushes: 1",
        ]

    def render_result(self, result: OperationResult) -> str:
        lines = [self._bold("Result\n")]
        for created in result.commits_created:
            lines.append(f"  {created.year}  {created.commit_id[:10]}")

        if result.push_state == PushState.PUSHED:
            lines.append(f"\n  Pushed {len(result.commits_created)} commit(s).")
        elif result.push_state == PushState.FAILED:
            lines.append(f"\n  {len(result.commits_created)} commit(s) were created locally but NOT published.")
        elif result.push_state == PushState.UNKNOWN:
            lines.append("\n  Push outcome unknown: verify the remote repository directly.")
        else:
            lines.append("\n  Nothing was pushed.")

        for error in result.errors:
            lines.append(self._error(f"  {error.kind} ({error.stage}): {error.message}"))
            if error.remediation:
                lines.append(self._muted(f"    hint: {error.remediation}"))
        return "\n".join(lines)

    def render_error(self, error: TimeTravelError) -> str:
        return self._error(error.describe())

    def _bold(self, text: str) -> str:
        return f"\033[1m{text}\033[0m" if self.color else text

    def _muted(self, text: str) -> str:
        return f"\033[90m{text}\033[0m" if self.color else text

    def _error(self, text: str) -> str:
        return f"\033[31m{text}\033[0m" if self.color else text
