"""
Statistics Aggregator

Turns a fetched issue list into the numbers behind /jira-report and
/jira-team: per-status counts, a fixed-width proportional bar, and
per-assignee workload. Recomputed on every request.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from jira_bridge.models import UNASSIGNED, Issue

BAR_WIDTH = 20


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive values (Python's round() is banker's)."""
    return int(math.floor(value + 0.5))


def _sorted_counts(counts: Dict[str, int]) -> List[Tuple[str, int]]:
    # dicts keep insertion order and sorted() is stable, so ties stay
    # in first-encountered order
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)


@dataclass(frozen=True)
class StatusCount:
    status: str
    count: int
    percent: int


@dataclass(frozen=True)
class BarSegment:
    """A run of the progress bar. ``status`` is None for the empty filler."""

    status: Optional[str]
    units: int


@dataclass(frozen=True)
class AssigneeWorkload:
    name: str
    total: int
    statuses: List[Tuple[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class ProjectStats:
    project_key: str
    project_name: str
    fetched: int
    total: int
    status_counts: List[StatusCount]
    bar: List[BarSegment]
    assignees: List[AssigneeWorkload]


@dataclass(frozen=True)
class EmptyProjectStats:
    """No issues were fetched for the project."""

    project_key: str


def count_statuses(issues: Sequence[Issue]) -> List[Tuple[str, int]]:
    """Status counts, descending, ties in first-encountered order."""
    counts: Dict[str, int] = {}
    for issue in issues:
        counts[issue.status] = counts.get(issue.status, 0) + 1
    return _sorted_counts(counts)


def allocate_bar(
    status_counts: Sequence[Tuple[str, int]],
    fetched: int,
    width: int = BAR_WIDTH,
) -> List[BarSegment]:
    """
    Split ``width`` units across statuses in proportion to their counts.

    Every status but the last gets its rounded share, never more than
    what is left; the last takes the remainder. The units always sum to
    exactly ``width``.

    Args:
        status_counts: (status, count) pairs, already sorted
        fetched: Number of issues the counts were taken from
        width: Total bar units

    Returns:
        One segment per status, or a single filler segment when there
        are no statuses
    """
    if not status_counts:
        return [BarSegment(status=None, units=width)]

    segments = []
    remaining = width
    last = len(status_counts) - 1

    for index, (status, count) in enumerate(status_counts):
        if index == last:
            units = max(remaining, 0)
        else:
            share = round_half_up(count / fetched * width) if fetched else 0
            units = min(share, remaining)
            remaining -= units
        segments.append(BarSegment(status=status, units=units))

    return segments


def group_by_assignee(issues: Sequence[Issue]) -> List[AssigneeWorkload]:
    """Workload per assignee, unassigned issues in their own bucket."""
    groups: Dict[str, Dict[str, int]] = {}
    totals: Dict[str, int] = {}

    for issue in issues:
        name = issue.assignee.display_name if issue.assignee else UNASSIGNED
        statuses = groups.setdefault(name, {})
        statuses[issue.status] = statuses.get(issue.status, 0) + 1
        totals[name] = totals.get(name, 0) + 1

    return [
        AssigneeWorkload(name=name, total=total, statuses=_sorted_counts(groups[name]))
        for name, total in _sorted_counts(totals)
    ]


def aggregate(
    issues: Sequence[Issue],
    project_key: str,
    total: Optional[int] = None,
) -> Union[ProjectStats, EmptyProjectStats]:
    """
    Build the full statistics for a project.

    Args:
        issues: Fetched issues (at most one search page)
        project_key: Project the issues belong to
        total: Backlog size reported by the tracker, when known

    Returns:
        ProjectStats, or EmptyProjectStats when nothing was fetched
    """
    fetched = len(issues)
    if fetched == 0:
        return EmptyProjectStats(project_key=project_key)

    counts = count_statuses(issues)
    project_name = issues[0].project_name or project_key

    return ProjectStats(
        project_key=project_key,
        project_name=project_name,
        fetched=fetched,
        total=total if total is not None else fetched,
        status_counts=[
            StatusCount(status, count, round_half_up(count / fetched * 100))
            for status, count in counts
        ],
        bar=allocate_bar(counts, fetched),
        assignees=group_by_assignee(issues),
    )
