"""
Plan, target and result records shared by the guard, executor and envelope
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple

from timetraveler.errors import ErrorRecord

TRAVELER_NAME = "Git Time Traveler"
TRAVELER_EMAIL = "timetraveler@example.com"


@dataclass(frozen=True)
class AuthorIdentity:
    """Name and email recorded as author and committer."""

    name: str
    email: str

    @staticmethod
    def traveler() -> "AuthorIdentity":
        return AuthorIdentity(name=TRAVELER_NAME, email=TRAVELER_EMAIL)

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class ContentDescriptor:
    """Marker file committed for one year."""

    path: str
    body: str

    @staticmethod
    def for_year(year: int) -> "ContentDescriptor":
        return ContentDescriptor(
            path=f"timetravel-{year}.md",
            body=(
                f"# Time Travel Commit for {year}\n\n"
                f"This file was created to show activity in the year {year}.\n"
            ),
        )


@dataclass(frozen=True)
class ScheduledCommit:
    """A single planned commit with fixed timestamps."""

    year: int
    author_timestamp: datetime
    committer_timestamp: datetime
    message: str
    content: ContentDescriptor


@dataclass(frozen=True)
class CommitPlan:
    """Ordered commits bound to one repository, branch and identity."""

    commits: Tuple[ScheduledCommit, ...]
    repository: str
    author: AuthorIdentity
    owner: Optional[str] = None
    branch: Optional[str] = None

    @property
    def timestamps(self) -> List[datetime]:
        return [commit.author_timestamp for commit in self.commits]

    @property
    def years(self) -> List[int]:
        return [commit.year for commit in self.commits]

    @property
    def full_name(self) -> str:
        if self.owner:
            return f"{self.owner}/{self.repository}"
        return self.repository


@dataclass
class RepositoryTarget:
    """Remote repository state discovered (and possibly created) by the guard."""

    owner: str
    name: str
    branch: Optional[str] = None
    remote_exists: bool = False
    created: bool = False
    will_create: bool = False
    default_branch_resolved: bool = False
    has_history: bool = False
    private: bool = False
    clone_url: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class PushState(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    PUSHED = "pushed"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CreatedCommit:
    year: int
    timestamp: datetime
    commit_id: str


@dataclass
class OperationResult:
    """Outcome of executing a plan, filled in as execution progresses."""

    commits_created: List[CreatedCommit] = field(default_factory=list)
    push_state: PushState = PushState.NOT_ATTEMPTED
    errors: List[ErrorRecord] = field(default_factory=list)
    workspace_path: Optional[str] = None
    cancelled: bool = False

    @property
    def pushed(self) -> bool:
        return self.push_state == PushState.PUSHED

    @property
    def succeeded(self) -> bool:
        return self.pushed and not self.errors

    @property
    def commit_ids(self) -> List[str]:
        return [commit.commit_id for commit in self.commits_created]


@dataclass(frozen=True)
class PlanPreview:
    """What a real run would do, produced without touching anything."""

    plan: CommitPlan
    target: RepositoryTarget

    @property
    def timestamps(self) -> List[datetime]:
        return self.plan.timestamps

    @property
    def would_create(self) -> bool:
        return self.target.will_create
