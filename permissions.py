"""
Membership predicates shared by every engine.

Each check is evaluated against a Team loaded for the current call; callers
never keep the result around. Two notions of "in the team" exist on purpose:

* `is_member` counts the creator even without an accepted Membership entry and
  gates reading and commenting.
* `is_assignable` only counts accepted Membership entries and gates task
  assignment.
"""
from typing import Optional

from schemas import Membership, Task, Team


def membership_for(team: Team, user_id: str) -> Optional[Membership]:
    for membership in team.members:
        if membership.user_id == user_id:
            return membership
    return None


def is_member(team: Team, user_id: str) -> bool:
    if user_id == team.creator_id:
        return True
    membership = membership_for(team, user_id)
    return membership is not None and membership.status == "accepted"


def is_admin(team: Team, user_id: str) -> bool:
    if user_id == team.creator_id:
        return True
    membership = membership_for(team, user_id)
    return membership is not None and membership.role == "admin" and membership.status == "accepted"


def is_assignable(team: Team, user_id: str) -> bool:
    membership = membership_for(team, user_id)
    return membership is not None and membership.status == "accepted"


def is_assignee(task: Task, user_id: str) -> bool:
    return any(a.user_id == user_id for a in task.assigned_members)


def derive_role(team: Team, user_id: str) -> str:
    if user_id == team.creator_id:
        return "creator"
    if is_admin(team, user_id):
        return "admin"
    return "member"
