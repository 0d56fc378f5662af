"""
Date expression parsing and commit timestamp scheduling
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import List, Optional, Tuple, Union

from timetraveler.errors import InvalidDateSpec, InvalidInput
from timetraveler.models import (
    AuthorIdentity,
    CommitPlan,
    ContentDescriptor,
    ScheduledCommit,
)

MIN_YEAR = 1970
MAX_YEAR = 2030
DEFAULT_HOUR = 18
DEFAULT_MESSAGE = "Time travel commit for {year}"
MAX_YEARS = 50

_INTEGER = re.compile(r"^\d{1,9}$")
_RANGE = re.compile(r"^(\d{1,9})\s*-\s*(\d{1,9})$")


@dataclass(frozen=True)
class SingleYear:
    year: int

    def years(self) -> List[int]:
        return [self.year]

    def __str__(self) -> str:
        return str(self.year)


@dataclass(frozen=True)
class YearRange:
    start: int
    end: int

    def years(self) -> List[int]:
        return list(range(self.start, self.end + 1))

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"


@dataclass(frozen=True)
class YearList:
    """Years in the order given, duplicates removed."""

    values: Tuple[int, ...]

    def years(self) -> List[int]:
        return sorted(set(self.values))

    def __str__(self) -> str:
        return ",".join(str(year) for year in self.values)


DateSpec = Union[SingleYear, YearRange, YearList]


def parse_date_spec(raw: str, min_year: int = MIN_YEAR, max_year: int = MAX_YEAR) -> DateSpec:
    """Parse a year, a year range or a comma-separated year list."""
    spec = _parse(raw, min_year, max_year)
    count = len(spec.years())
    if count > MAX_YEARS:
        raise InvalidDateSpec(raw, f"too many years ({count}, max {MAX_YEARS})")
    return spec


def _parse(raw: str, min_year: int, max_year: int) -> DateSpec:
    if raw is None:
        raise InvalidDateSpec("", "date expression cannot be empty")

    text = raw.strip()
    if not text:
        raise InvalidDateSpec(raw, "date expression cannot be empty")

    if _INTEGER.match(text):
        return SingleYear(_check_year(raw, int(text), min_year, max_year))

    match = _RANGE.match(text)
    if match:
        start = _check_year(raw, int(match.group(1)), min_year, max_year)
        end = _check_year(raw, int(match.group(2)), min_year, max_year)
        if start > end:
            raise InvalidDateSpec(raw, f"range start {start} is after range end {end}")
        return YearRange(start, end)

    if "," in text:
        values = []
        for part in text.split(","):
            part = part.strip()
            if not part:
                continue
            if not _INTEGER.match(part):
                raise InvalidDateSpec(raw, f"list item '{part}' is not a year")
            year = _check_year(raw, int(part), min_year, max_year)
            if year not in values:
                values.append(year)

        if not values:
            raise InvalidDateSpec(raw, "no years found in list")
        return YearList(tuple(values))

    raise InvalidDateSpec(raw, "unrecognized format")


def _check_year(raw: str, year: int, min_year: int, max_year: int) -> int:
    if not min_year <= year <= max_year:
        raise InvalidDateSpec(raw, f"year {year} is outside {min_year}-{max_year}")
    return year


def validate_month(month: int) -> int:
    """Check that month is 1-12."""
    if not 1 <= month <= 12:
        raise InvalidInput("month", str(month), "must be between 1 and 12", "use a month number (1-12)")
    return month


def validate_day(day: int) -> int:
    """Check that day is 1-31; the calendar check happens when scheduling."""
    if not 1 <= day <= 31:
        raise InvalidInput("day", str(day), "must be between 1 and 31", "use a day number (1-31)")
    return day


def validate_hour(hour: int) -> int:
    """Check that hour is 0-23."""
    if not 0 <= hour <= 23:
        raise InvalidInput("hour", str(hour), "must be between 0 and 23", "use 24-hour format (0-23)")
    return hour


class Scheduler:
    """Expands a DateSpec into ordered commit timestamps."""

    def __init__(
        self,
        hour: int = DEFAULT_HOUR,
        month: int = 1,
        day: int = 1,
        tz: Optional[tzinfo] = timezone.utc,
        message_template: Optional[str] = None,
    ):
        self.hour = validate_hour(hour)
        self.month = validate_month(month)
        self.day = validate_day(day)
        # None means local time
        self.tz = tz
        self.message_template = message_template or DEFAULT_MESSAGE

    def schedule(self, spec: DateSpec) -> Tuple[ScheduledCommit, ...]:
        """Return one commit per distinct year, in ascending order."""
        commits = []
        for year in sorted(set(spec.years())):
            timestamp = self._timestamp(year)
            commits.append(
                ScheduledCommit(
                    year=year,
                    author_timestamp=timestamp,
                    committer_timestamp=timestamp,
                    message=self.message_for(year),
                    content=ContentDescriptor.for_year(year),
                )
            )
        return tuple(commits)

    def message_for(self, year: int) -> str:
        return self.message_template.replace("{year}", str(year))

    def _timestamp(self, year: int) -> datetime:
        try:
            naive = datetime(year, self.month, self.day, self.hour)
        except ValueError as e:
            raise InvalidDateSpec(
                f"{year}-{self.month:02d}-{self.day:02d}", f"not a calendar date ({e})"
            ) from e

        if self.tz is None:
            return naive.astimezone()
        return naive.replace(tzinfo=self.tz)


def build_plan(
    spec: DateSpec,
    scheduler: Scheduler,
    repository: str,
    author: AuthorIdentity,
    owner: Optional[str] = None,
    branch: Optional[str] = None,
) -> CommitPlan:
    """Schedule the years and bind them to a repository and identity."""
    commits = scheduler.schedule(spec)
    if not commits:
        raise InvalidDateSpec(str(spec), "expression produced no commits")

    return CommitPlan(
        commits=commits,
        repository=repository,
        author=author,
        owner=owner,
        branch=branch,
    )
