"""
Database Schemas for Team Task Tracker

Each Pydantic model below maps to a MongoDB collection. The collection name is the
lowercased class name (e.g., Team -> "team"). References to other documents are
stored as _id strings.
"""
from datetime import datetime
from typing import Annotated, Dict, List, Optional, Literal
from pydantic import AfterValidator, BaseModel, Field, EmailStr

from time_utils import as_utc

UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]

Role = Literal["admin", "member"]
MembershipStatus = Literal["pending", "accepted", "rejected"]
Priority = Literal["Low", "Medium", "High"]
AssignmentState = Literal["Not Started", "In Progress", "Completed"]
DisplayRole = Literal["creator", "admin", "member"]

ROLES = ("admin", "member")
INVITE_RESPONSES = ("accepted", "rejected")
PRIORITIES = ("High", "Medium", "Low")
NOT_STARTED = "Not Started"
IN_PROGRESS = "In Progress"
COMPLETED = "Completed"
ASSIGNMENT_STATES = (NOT_STARTED, IN_PROGRESS, COMPLETED)


class Document(BaseModel):
    id: Optional[str] = Field(None, description="String form of the document _id")
    version: int = Field(0, description="Bumped on every update; used for compare-and-swap")


# Auth/User
class User(Document):
    username: str = Field(..., description="Unique handle, used for @mentions")
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="BCrypt hash of the password")
    created_at: Optional[UTCDateTime] = None


class UserPublic(BaseModel):
    id: str
    username: str
    email: EmailStr

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(id=user.id, username=user.username, email=user.email)


# Teams
class Membership(BaseModel):
    user_id: str
    role: Role = "member"
    status: MembershipStatus = "pending"


class Team(Document):
    name: str = Field(..., description="Team name")
    creator_id: str = Field(..., description="User _id of the creator; always an admin")
    members: List[Membership] = Field(default_factory=list)
    created_at: Optional[UTCDateTime] = None


class MemberView(Membership):
    user: Optional[UserPublic] = None


class TeamView(Team):
    """Team as returned to clients, with creator and members resolved to public users."""
    creator: Optional[UserPublic] = None
    members: List[MemberView] = Field(default_factory=list)


# Tasks
class Assignment(BaseModel):
    user_id: str
    status: AssignmentState = NOT_STARTED
    updated_at: Optional[UTCDateTime] = None


class Task(Document):
    creator_id: str = Field(..., description="User _id of the admin who created the task")
    team_id: str = Field(..., description="Owning team _id")
    title: str = Field(...)
    description: str = Field("")
    priority: Priority = "Low"
    due_date: UTCDateTime
    assigned_members: List[Assignment] = Field(default_factory=list)
    created_at: Optional[UTCDateTime] = None


# Comments
class Comment(Document):
    task_id: str = Field(..., description="Related task _id")
    author_id: str = Field(..., description="User _id of the author")
    text: str = Field(...)
    mentions: List[str] = Field(default_factory=list, description="User _ids notified by this comment")
    created_at: Optional[UTCDateTime] = None


class CommentView(Comment):
    role: DisplayRole = Field(..., description="Author's standing in the team when the comment is read")
    author: Optional[UserPublic] = None
    mentioned_users: List[UserPublic] = Field(default_factory=list)


# Notifications
class Notification(Document):
    recipient_id: str
    sender_id: str
    task_id: str
    comment_id: str
    text: str
    read: bool = False
    created_at: Optional[UTCDateTime] = None


class NotificationView(Notification):
    sender: Optional[UserPublic] = None
    task_title: Optional[str] = None


# Reports
class CompletionStats(BaseModel):
    total: int = 0
    completed: int = 0
    rate: float = 0


class TaskSummary(BaseModel):
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    not_started: int = 0
    mixed: int = 0
    unassigned: int = 0
    completion_rate: float = 0


class ReportPeriod(BaseModel):
    start_date: str
    end_date: str


class CompletedTaskItem(BaseModel):
    id: str
    title: str
    priority: Priority
    completed_at: Optional[datetime] = None


class TeamReport(BaseModel):
    team_name: str
    period: ReportPeriod
    task_summary: TaskSummary
    priority_breakdown: Dict[str, CompletionStats]
    member_performance: Dict[str, CompletionStats]
    recent_completed_tasks: List[CompletedTaskItem]


class AdminTeam(BaseModel):
    id: str
    name: str


# Lightweight request models (no password_hash exposure)
class RegisterRequest(BaseModel):
    username: str
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TeamCreate(BaseModel):
    name: str


class InviteRequest(BaseModel):
    email: EmailStr


class RespondRequest(BaseModel):
    status: str = Field(..., description="accepted | rejected")


class AddMemberRequest(BaseModel):
    user_id: str
    role: str = Field("member", description="admin | member")


class TaskCreate(BaseModel):
    team_id: str
    title: str
    description: str = ""
    priority: Priority = "Low"
    due_date: datetime
    assigned_members: List[str] = Field(default_factory=list, description="User _id strings")


class TaskUpdate(BaseModel):
    title: str
    description: str = ""
    priority: Priority = "Low"
    due_date: datetime
    assigned_members: Optional[List[str]] = Field(None, description="Replaces every assignee when given")


class StatusUpdate(BaseModel):
    status: str = Field(..., description="Not Started | In Progress | Completed")


class CommentCreate(BaseModel):
    text: str


class MarkReadRequest(BaseModel):
    notification_ids: List[str]
