# project_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime, timezone

from models.models import ProjectStatus, UserRole


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class MemberInput(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=100)


class ProjectCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    category: Optional[str] = Field(default="student-project", max_length=100)
    students: List[MemberInput] = Field(default_factory=list)
    collaborators: List[MemberInput] = Field(default_factory=list)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v):
        return to_naive_utc(v)


class ProjectUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    category: Optional[str] = Field(default=None, max_length=100)
    archived: Optional[bool] = None
    # None leaves membership untouched; a list replaces it
    students: Optional[List[MemberInput]] = None
    collaborators: Optional[List[MemberInput]] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v):
        return to_naive_utc(v)


class MemberRead(BaseModel):
    id: int
    name: Optional[str] = None
    email: str
    role: UserRole

    model_config = ConfigDict(from_attributes=True)


class ProjectRead(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    category: Optional[str] = None
    is_completed: bool
    archived: bool
    status: ProjectStatus
    display_status: ProjectStatus
    lead_label: str
    supervisor_id: int
    supervisor: Optional[MemberRead] = None
    students: List[MemberRead] = Field(default_factory=list)
    collaborators: List[MemberRead] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectStatusRead(BaseModel):
    project_id: int
    status: ProjectStatus
    total_tasks: int
    completed_tasks: int
    overdue: int
    behind_schedule: int
    duration_overflow: int
    beyond_project: int
