import logging
import re
from typing import List, Tuple

from pymongo import DESCENDING

from database import Store, oid
from errors import Forbidden, InvalidInput, NotFound
from permissions import derive_role, is_member
from schemas import Comment, CommentView, Notification, NotificationView, Task, Team

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"@([A-Za-z0-9_]+)")
PREVIEW_LENGTH = 50


def extract_mentions(text: str) -> List[str]:
    """Return the @handles in `text`, first occurrence order, without duplicates.

    A handle is one or more ASCII letters, digits or underscores; anything
    else (punctuation, whitespace, non-ASCII letters) ends it.
    """
    return list(dict.fromkeys(MENTION_PATTERN.findall(text or "")))


def mention_text(sender_username: str, text: str) -> str:
    preview = text[:PREVIEW_LENGTH] + ("..." if len(text) > PREVIEW_LENGTH else "")
    return f'{sender_username} mentioned you in a comment: "{preview}"'


class CommentService:
    def __init__(self, store: Store):
        self.store = store

    def _task_and_team(self, caller_id: str, task_id: str, action: str) -> Tuple[Task, Team]:
        task = self.store.tasks.find(task_id)
        if task is None:
            raise NotFound("Task not found")
        team = self.store.teams.find(task.team_id)
        if team is None:
            raise NotFound("Team not found")
        if not is_member(team, caller_id):
            raise Forbidden(f"Not authorized to {action}")
        return task, team

    def list_comments(self, caller_id: str, task_id: str) -> List[CommentView]:
        task, team = self._task_and_team(caller_id, task_id, "view comments")
        comments = self.store.comments.find_many({"task_id": task.id}, sort=[("created_at", DESCENDING)])
        return self._views(team, comments)

    def _views(self, team: Team, comments: List[Comment]) -> List[CommentView]:
        users = self.store.public_users(
            user_id for c in comments for user_id in [c.author_id] + c.mentions
        )
        return [
            CommentView(
                **c.model_dump(),
                role=derive_role(team, c.author_id),
                author=users.get(c.author_id),
                mentioned_users=[users[m] for m in c.mentions if m in users],
            )
            for c in comments
        ]

    def _resolve_mentions(self, team: Team, caller_id: str, text: str) -> List[str]:
        handles = extract_mentions(text)
        if not handles:
            return []
        users = {u.username: u for u in self.store.users.find_many({"username": {"$in": handles}})}
        mentioned = []
        for handle in handles:
            user = users.get(handle)
            if user is not None and user.id != caller_id and is_member(team, user.id):
                mentioned.append(user.id)
        return mentioned

    def create_comment(self, caller_id: str, task_id: str, text: str) -> CommentView:
        if not text or not text.strip():
            raise InvalidInput("Comment text is required")
        task, team = self._task_and_team(caller_id, task_id, "comment on this task")
        mentioned = self._resolve_mentions(team, caller_id, text)
        comment = self.store.comments.insert(
            Comment(
                task_id=task.id,
                author_id=caller_id,
                text=text,
                mentions=mentioned,
                created_at=self.store.clock(),
            )
        )
        if mentioned:
            author = self.store.users.find(caller_id)
            message = mention_text(author.username if author else caller_id, text)
            for recipient_id in mentioned:
                self.store.notifications.insert(
                    Notification(
                        recipient_id=recipient_id,
                        sender_id=caller_id,
                        task_id=task.id,
                        comment_id=comment.id,
                        text=message,
                        created_at=self.store.clock(),
                    )
                )
        logger.info("Comment %s on task %s by %s (%d mentions)", comment.id, task.id, caller_id, len(mentioned))
        return self._views(team, [comment])[0]

    def list_notifications(self, caller_id: str) -> List[NotificationView]:
        """Caller's notifications, newest first, with sender and task title filled in."""
        notes = self.store.notifications.find_many({"recipient_id": caller_id}, sort=[("created_at", DESCENDING)])
        senders = self.store.public_users(n.sender_id for n in notes)
        task_ids = [i for i in (oid(t) for t in {n.task_id for n in notes}) if i is not None]
        titles = {}
        if task_ids:
            titles = {t.id: t.title for t in self.store.tasks.find_many({"_id": {"$in": task_ids}})}
        return [
            NotificationView(**n.model_dump(), sender=senders.get(n.sender_id), task_title=titles.get(n.task_id))
            for n in notes
        ]

    def mark_notifications_read(self, caller_id: str, notification_ids: List[str]) -> int:
        if not notification_ids:
            raise InvalidInput("Notification IDs are required")
        ids = [i for i in (oid(n) for n in notification_ids) if i is not None]
        # Ids belonging to someone else are skipped by the recipient filter
        return self.store.notifications.update_many(
            {"_id": {"$in": ids}, "recipient_id": caller_id},
            {"read": True},
        )
