"""
Team completion reports.

Read-only. The report is assembled from small folds over the task list so that
each figure can be checked on its own:

* `bucket_of` places every task in exactly one of completed / in_progress /
  not_started / mixed / unassigned. The first three keep their historical
  meaning; `mixed` catches tasks such as "one Not Started, one Completed" that
  none of them claims, and `unassigned` holds tasks without assignees.
* `priority_breakdown` and `member_performance` group by priority and by
  assignee.
"""
import logging
from collections import Counter
from datetime import datetime
from itertools import groupby
from operator import attrgetter, itemgetter
from typing import Dict, Iterable, List, Mapping, Optional

from database import Store
from errors import Forbidden
from permissions import is_admin
from schemas import (
    COMPLETED,
    IN_PROGRESS,
    NOT_STARTED,
    PRIORITIES,
    AdminTeam,
    CompletedTaskItem,
    CompletionStats,
    ReportPeriod,
    Task,
    TaskSummary,
    TeamReport,
)
from tasks import is_completed

logger = logging.getLogger(__name__)

RECENT_COMPLETED_LIMIT = 5


def _rate(completed: int, total: int) -> float:
    return completed / total * 100 if total else 0


def completion_stats(flags: Iterable[bool]) -> CompletionStats:
    flags = list(flags)
    completed = sum(flags)
    return CompletionStats(total=len(flags), completed=completed, rate=_rate(completed, len(flags)))


def bucket_of(task: Task) -> str:
    states = {a.status for a in task.assigned_members}
    if not states:
        return "unassigned"
    if states == {COMPLETED}:
        return "completed"
    if IN_PROGRESS in states:
        return "in_progress"
    if states == {NOT_STARTED}:
        return "not_started"
    return "mixed"


def summarize_tasks(tasks: List[Task]) -> TaskSummary:
    counts = Counter(bucket_of(t) for t in tasks)
    return TaskSummary(
        total=len(tasks),
        completed=counts["completed"],
        in_progress=counts["in_progress"],
        not_started=counts["not_started"],
        mixed=counts["mixed"],
        unassigned=counts["unassigned"],
        completion_rate=_rate(counts["completed"], len(tasks)),
    )


def priority_breakdown(tasks: List[Task]) -> Dict[str, CompletionStats]:
    return {p: completion_stats(is_completed(t) for t in tasks if t.priority == p) for p in PRIORITIES}


def member_performance(tasks: List[Task], usernames: Mapping[str, str]) -> Dict[str, CompletionStats]:
    """Per-assignee counts; each (task, assignee) pair counts once, judged by that assignee's own status."""
    pairs = sorted(
        ((usernames.get(a.user_id, a.user_id), a.status == COMPLETED) for t in tasks for a in t.assigned_members),
        key=itemgetter(0),
    )
    return {
        name: completion_stats(done for _, done in group)
        for name, group in groupby(pairs, key=itemgetter(0))
    }


def completed_at(task: Task) -> Optional[datetime]:
    stamps = [a.updated_at for a in task.assigned_members]
    if not stamps or any(s is None for s in stamps):
        return None
    return max(stamps)


def recent_completed(tasks: List[Task], limit: int = RECENT_COMPLETED_LIMIT) -> List[CompletedTaskItem]:
    done = sorted((t for t in tasks if is_completed(t)), key=attrgetter("created_at"), reverse=True)
    return [
        CompletedTaskItem(id=t.id, title=t.title, priority=t.priority, completed_at=completed_at(t))
        for t in done[:limit]
    ]


class ReportService:
    def __init__(self, store: Store):
        self.store = store

    def list_admin_teams(self, caller_id: str) -> List[AdminTeam]:
        candidates = self.store.teams.find_many(
            {"$or": [{"creator_id": caller_id}, {"members.user_id": caller_id}]}
        )
        return [AdminTeam(id=t.id, name=t.name) for t in candidates if is_admin(t, caller_id)]

    def _usernames(self, user_ids: Iterable[str]) -> Dict[str, str]:
        return {user_id: user.username for user_id, user in self.store.public_users(user_ids).items()}

    def generate_team_report(
        self,
        caller_id: str,
        team_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> TeamReport:
        team = self.store.teams.find(team_id)
        # Missing team and non-admin caller get the same answer so team ids can't be guessed
        if team is None or not is_admin(team, caller_id):
            raise Forbidden("Not authorized to generate reports for this team")

        query = {"team_id": team.id}
        created = {}
        if start_date is not None:
            created["$gte"] = start_date
        if end_date is not None:
            created["$lte"] = end_date
        if created:
            query["created_at"] = created
        tasks = self.store.tasks.find_many(query)

        usernames = self._usernames(a.user_id for t in tasks for a in t.assigned_members)
        logger.info("Report for team %s over %d tasks", team.id, len(tasks))
        return TeamReport(
            team_name=team.name,
            period=ReportPeriod(
                start_date=start_date.isoformat() if start_date else "All time",
                end_date=end_date.isoformat() if end_date else "Present",
            ),
            task_summary=summarize_tasks(tasks),
            priority_breakdown=priority_breakdown(tasks),
            member_performance=member_performance(tasks, usernames),
            recent_completed_tasks=recent_completed(tasks),
        )
