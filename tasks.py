import logging
from datetime import datetime
from typing import Iterable, List, Optional

from pymongo import DESCENDING

from database import Store, retry_on_stale
from errors import Forbidden, InvalidInput, NotFound
from permissions import is_admin, is_assignable, is_assignee
from schemas import ASSIGNMENT_STATES, COMPLETED, NOT_STARTED, PRIORITIES, Assignment, Task, Team

logger = logging.getLogger(__name__)


def is_completed(task: Task) -> bool:
    """A task is done once it has assignees and every one of them is Completed."""
    return bool(task.assigned_members) and all(a.status == COMPLETED for a in task.assigned_members)


def reset_assignments(team: Team, assignee_ids: Optional[Iterable[str]], now: datetime) -> List[Assignment]:
    """Build a fresh assignee list for `team`, every entry Not Started.

    Used both on creation and on reassignment, so reassigning a task discards
    whatever progress the previous assignees had recorded. Duplicate ids
    collapse to their first occurrence.
    """
    ids = list(dict.fromkeys(assignee_ids or []))
    invalid = [user_id for user_id in ids if not is_assignable(team, user_id)]
    if invalid:
        raise InvalidInput("Some assigned members are not part of the team")
    return [Assignment(user_id=user_id, status=NOT_STARTED, updated_at=now) for user_id in ids]


def _validate_fields(title: str, priority: str, due_date: Optional[datetime]) -> str:
    title = (title or "").strip()
    if not title:
        raise InvalidInput("Task title is required")
    if priority not in PRIORITIES:
        raise InvalidInput("Priority must be one of Low, Medium, High")
    if due_date is None:
        raise InvalidInput("Due date is required")
    return title


class TaskService:
    """Task lifecycle. Only writer of `Task.assigned_members`."""

    def __init__(self, store: Store):
        self.store = store

    def _admin_team(self, caller_id: str, team_id: str, message: str) -> Team:
        team = self.store.teams.find(team_id)
        if team is None or not is_admin(team, caller_id):
            raise Forbidden(message)
        return team

    def create_task(
        self,
        caller_id: str,
        team_id: str,
        title: str,
        description: str,
        priority: str,
        due_date: datetime,
        assignee_ids: Optional[List[str]] = None,
    ) -> Task:
        team = self._admin_team(caller_id, team_id, "Not authorized to create tasks for this team")
        title = _validate_fields(title, priority, due_date)
        now = self.store.clock()
        task = Task(
            creator_id=caller_id,
            team_id=team.id,
            title=title,
            description=description or "",
            priority=priority,
            due_date=due_date,
            assigned_members=reset_assignments(team, assignee_ids, now),
            created_at=now,
        )
        task = self.store.tasks.insert(task)
        logger.info("Task %s created in team %s with %d assignees", task.id, team.id, len(task.assigned_members))
        return task

    def get_tasks_for_user(self, caller_id: str) -> List[Task]:
        return self.store.tasks.find_many(
            {"$or": [{"creator_id": caller_id}, {"assigned_members.user_id": caller_id}]},
            sort=[("created_at", DESCENDING)],
        )

    def update_task(
        self,
        caller_id: str,
        task_id: str,
        title: str,
        description: str,
        priority: str,
        due_date: datetime,
        assignee_ids: Optional[List[str]] = None,
    ) -> Task:
        def apply() -> Task:
            task = self.store.tasks.find(task_id)
            if task is None:
                raise NotFound("Task not found")
            team = self._admin_team(caller_id, task.team_id, "Not authorized to update this task")
            task.title = _validate_fields(title, priority, due_date)
            task.description = description or ""
            task.priority = priority
            task.due_date = due_date
            if assignee_ids is not None:
                task.assigned_members = reset_assignments(team, assignee_ids, self.store.clock())
            return self.store.tasks.update(task)

        task = retry_on_stale(apply)
        logger.info("Task %s updated by %s", task.id, caller_id)
        return task

    def update_task_status(self, caller_id: str, task_id: str, status: str) -> Task:
        if status not in ASSIGNMENT_STATES:
            raise InvalidInput("Status must be one of Not Started, In Progress, Completed")

        def apply() -> Task:
            task = self.store.tasks.find(task_id)
            if task is None:
                raise NotFound("Task not found")
            if not is_assignee(task, caller_id):
                raise Forbidden("Not authorized to update this task")
            now = self.store.clock()
            for entry in task.assigned_members:
                if entry.user_id == caller_id:
                    entry.status = status
                    entry.updated_at = now
            return self.store.tasks.update(task)

        task = retry_on_stale(apply)
        logger.info("Task %s: %s set status to %s", task.id, caller_id, status)
        return task

    def delete_task(self, caller_id: str, task_id: str) -> None:
        task = self.store.tasks.find(task_id)
        if task is None:
            raise NotFound("Task not found")
        self._admin_team(caller_id, task.team_id, "Not authorized to delete this task")
        self.store.tasks.delete(task.id)
        logger.info("Task %s deleted by %s", task.id, caller_id)
