# models/models.py
from typing import Optional, List
from datetime import datetime
from enum import Enum
import re

from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import UniqueConstraint

from core.database import utcnow


# ============================================================
# ENUMS
# ============================================================
class UserRole(str, Enum):
    SUPERVISOR = "SUPERVISOR"
    STUDENT = "STUDENT"
    COLLABORATOR = "COLLABORATOR"
    ADMIN = "ADMIN"


class SubscriptionType(str, Enum):
    FREE_TRIAL = "FREE_TRIAL"
    SUBSCRIBED = "SUBSCRIBED"
    SPONSORED = "SPONSORED"
    CANCELLED = "CANCELLED"
    ADMIN_APPROVED = "ADMIN_APPROVED"


_TASK_STATUS_ALIASES = {
    "DONE": "COMPLETE",
    "COMPLETED": "COMPLETE",
    "NOT_STARTED": "TODO",
    "TO_DO": "TODO",
}


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    BEHIND_SCHEDULE = "BEHIND_SCHEDULE"
    AT_RISK = "AT_RISK"
    COMPLETE = "COMPLETE"
    BLOCKED = "BLOCKED"

    @classmethod
    def parse(cls, raw) -> Optional["TaskStatus"]:
        """
        Normalize an externally sourced status string ("done", "In-Progress",
        "not started", ...) to the canonical value. Unknown values give None.
        """
        if raw is None:
            return None
        if isinstance(raw, cls):
            return raw
        key = re.sub(r"[\s\-]+", "_", str(raw).strip()).upper()
        key = _TASK_STATUS_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return None

    @property
    def is_done(self) -> bool:
        return self is TaskStatus.COMPLETE


class ProjectStatus(str, Enum):
    NOT_STARTED = "Not Started"
    ON_TRACK = "On Track"
    AT_RISK = "At Risk"
    BEHIND_SCHEDULE = "Behind Schedule"
    DANGER = "Danger"
    COMPLETED = "Completed"


# ============================================================
# LINK MODELS
# ============================================================
class ProjectStudentLink(SQLModel, table=True):
    __tablename__ = "project_student_link"
    project_id: int = Field(foreign_key="project.id", primary_key=True)
    user_id: int = Field(foreign_key="user.id", primary_key=True)


class ProjectCollaboratorLink(SQLModel, table=True):
    __tablename__ = "project_collaborator_link"
    project_id: int = Field(foreign_key="project.id", primary_key=True)
    user_id: int = Field(foreign_key="user.id", primary_key=True)


class TaskAssignmentLink(SQLModel, table=True):
    __tablename__ = "task_assignment_link"
    task_id: int = Field(foreign_key="task.id", primary_key=True)
    user_id: int = Field(foreign_key="user.id", primary_key=True)


# ============================================================
# USER
# ============================================================
class User(SQLModel, table=True):
    __tablename__ = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: Optional[str] = Field(default=None, max_length=100)
    email: str = Field(index=True, unique=True, max_length=255, nullable=False)
    # Placeholder members (added to a project before signing up) have no password
    password_hash: Optional[str] = Field(default=None)
    role: UserRole = Field(default=UserRole.STUDENT, index=True)
    email_verified_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    # Subscription / sponsorship
    subscription_type: SubscriptionType = Field(default=SubscriptionType.FREE_TRIAL, index=True)
    subscription_started_at: Optional[datetime] = None
    subscription_expires_at: Optional[datetime] = None
    sponsor_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    supervisor_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    sponsor_subscription_inactive: bool = Field(default=False, index=True)
    # Bumped on every sponsorship grant; guards the sponsor limit against stale counts
    sponsorship_version: int = Field(default=0, nullable=False)

    # Billing provider references
    billing_customer_id: Optional[str] = Field(default=None, max_length=255)
    billing_mandate_id: Optional[str] = Field(default=None, max_length=255, index=True)
    billing_subscription_id: Optional[str] = Field(default=None, max_length=255, index=True)
    billing_subscription_status: Optional[str] = Field(default=None, max_length=50)

    @property
    def is_email_verified(self) -> bool:
        return self.email_verified_at is not None

    @property
    def is_awaiting_sponsorship(self) -> bool:
        return self.subscription_type == SubscriptionType.SPONSORED and self.sponsor_id is None

    @property
    def display_name(self) -> str:
        return self.name or self.email


# ============================================================
# PROJECT
# ============================================================
class Project(SQLModel, table=True):
    __tablename__ = "project"

    id: Optional[int] = Field(default=None, primary_key=True)
    title: str = Field(max_length=200, index=True)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    category: Optional[str] = Field(default="student-project", max_length=100)
    is_completed: bool = Field(default=False)
    archived: bool = Field(default=False)
    status: ProjectStatus = Field(default=ProjectStatus.NOT_STARTED)
    supervisor_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Relationships
    supervisor: Optional["User"] = Relationship()
    students: List["User"] = Relationship(link_model=ProjectStudentLink)
    collaborators: List["User"] = Relationship(link_model=ProjectCollaboratorLink)
    tasks: List["Task"] = Relationship(
        back_populates="project",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )

    @property
    def display_status(self) -> ProjectStatus:
        if self.is_completed:
            return ProjectStatus.COMPLETED
        return self.status

    @property
    def lead_label(self) -> str:
        return "Principal Investigator" if (self.category or "").lower() == "collaboration" else "Supervisor"

    def has_member(self, user_id: int) -> bool:
        return any(u.id == user_id for u in self.students) or any(
            u.id == user_id for u in self.collaborators
        )


# ============================================================
# TASK
# ============================================================
class Task(SQLModel, table=True):
    __tablename__ = "task"
    __table_args__ = (UniqueConstraint("project_id", "title", name="uq_task_project_title"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    title: str = Field(max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: TaskStatus = Field(default=TaskStatus.TODO)
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, description="Planned duration in days")
    flagged: bool = Field(default=False)
    flagged_by_user_id: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    # Relationships
    project: Optional["Project"] = Relationship(back_populates="tasks")
    assignees: List["User"] = Relationship(link_model=TaskAssignmentLink)


# ============================================================
# EMAIL VERIFICATION
# ============================================================
class EmailVerification(SQLModel, table=True):
    __tablename__ = "email_verification"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    token: str = Field(index=True, unique=True, max_length=255)
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)


# ============================================================
# BILLING REDIRECT FLOW
# ============================================================
class BillingRedirectFlow(SQLModel, table=True):
    __tablename__ = "billing_redirect_flow"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    flow_id: str = Field(index=True, unique=True, max_length=255)
    session_token: str = Field(unique=True, max_length=255)
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
