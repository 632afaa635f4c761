import logging
import re
from typing import List

from pymongo import ASCENDING, DESCENDING

from database import Store, oid, retry_on_stale
from errors import AlreadyMember, Forbidden, InvalidInput, NotFound
from permissions import is_admin, membership_for
from schemas import INVITE_RESPONSES, ROLES, MemberView, Membership, Team, TeamView, UserPublic

logger = logging.getLogger(__name__)


class TeamService:
    """Team creation, invitations and roster changes.

    This is the only writer of `Team.members`.
    """

    def __init__(self, store: Store):
        self.store = store

    def views(self, teams: List[Team]) -> List[TeamView]:
        """Attach public creator and member details, one user lookup for the whole batch."""
        users = self.store.public_users(
            user_id for team in teams for user_id in [team.creator_id] + [m.user_id for m in team.members]
        )
        return [
            TeamView(
                **team.model_dump(exclude={"members"}),
                creator=users.get(team.creator_id),
                members=[MemberView(**m.model_dump(), user=users.get(m.user_id)) for m in team.members],
            )
            for team in teams
        ]

    def view(self, team: Team) -> TeamView:
        return self.views([team])[0]

    def create_team(self, caller_id: str, name: str) -> Team:
        name = (name or "").strip()
        if not name:
            raise InvalidInput("Team name is required")
        team = Team(
            name=name,
            creator_id=caller_id,
            members=[Membership(user_id=caller_id, role="admin", status="accepted")],
            created_at=self.store.clock(),
        )
        team = self.store.teams.insert(team)
        logger.info("Team %s (%s) created by %s", team.id, team.name, caller_id)
        return team

    def list_teams(self, caller_id: str) -> List[Team]:
        return self.store.teams.find_many(
            {"$or": [{"creator_id": caller_id}, {"members.user_id": caller_id}]},
            sort=[("created_at", DESCENDING)],
        )

    def list_invitations(self, caller_id: str) -> List[Team]:
        return self.store.teams.find_many(
            {"members": {"$elemMatch": {"user_id": caller_id, "status": "pending"}}},
            sort=[("created_at", DESCENDING)],
        )

    def invite(self, caller_id: str, team_id: str, email: str) -> Team:
        email = (email or "").strip().lower()

        def apply() -> Team:
            team = self.store.teams.find(team_id)
            # Only the creator may invite; anyone else sees the same answer as for a missing team
            if team is None or team.creator_id != caller_id:
                raise NotFound("Team not found or unauthorized")
            user = self.store.users.find_one({"email": email})
            if user is None:
                raise NotFound("User not found")
            if membership_for(team, user.id) is not None:
                raise AlreadyMember("User is already a team member")
            team.members.append(Membership(user_id=user.id, role="member", status="pending"))
            return self.store.teams.update(team)

        team = retry_on_stale(apply)
        logger.info("Invitation to team %s sent to %s", team.id, email)
        return team

    def respond(self, caller_id: str, team_id: str, status: str) -> Team:
        if status not in INVITE_RESPONSES:
            raise InvalidInput("Status must be 'accepted' or 'rejected'")

        def apply() -> Team:
            team = self.store.teams.find(team_id)
            membership = membership_for(team, caller_id) if team is not None else None
            if membership is None or membership.status != "pending":
                raise NotFound("Invitation not found")
            membership.status = status
            return self.store.teams.update(team)

        team = retry_on_stale(apply)
        logger.info("User %s %s invitation to team %s", caller_id, status, team.id)
        return team

    def add_member(self, caller_id: str, team_id: str, user_id: str, role: str = "member") -> Team:
        if role not in ROLES:
            raise InvalidInput("Invalid role")

        def apply() -> Team:
            team = self.store.teams.find(team_id)
            if team is None:
                raise NotFound("Team not found")
            if not is_admin(team, caller_id):
                raise Forbidden("Not authorized to add members")
            user = self.store.users.find(user_id)
            if user is None:
                raise NotFound("User not found")
            if membership_for(team, user.id) is not None:
                raise AlreadyMember("User is already a member of this team")
            # Direct adds skip the invitation step
            team.members.append(Membership(user_id=user.id, role=role, status="accepted"))
            return self.store.teams.update(team)

        team = retry_on_stale(apply)
        logger.info("User %s added to team %s as %s by %s", user_id, team.id, role, caller_id)
        return team

    def search_users(self, caller_id: str, query: str) -> List[UserPublic]:
        query = (query or "").strip()
        if not query:
            raise InvalidInput("Search query is required")
        pattern = {"$regex": re.escape(query), "$options": "i"}
        users = self.store.users.find_many(
            {
                "_id": {"$ne": oid(caller_id)},
                "$or": [{"username": pattern}, {"email": pattern}],
            },
            sort=[("username", ASCENDING)],
        )
        return [UserPublic.from_user(u) for u in users]
