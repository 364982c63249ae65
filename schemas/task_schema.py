# task_schema.py
from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import datetime

from models.models import TaskStatus
from schemas.project_schema import to_naive_utc


def _parse_status(value):
    if value is None:
        return None
    status = TaskStatus.parse(value)
    if status is None:
        raise ValueError(f"Unknown task status: {value}")
    return status


class TaskCreate(BaseModel):
    project_id: int
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: TaskStatus = TaskStatus.TODO
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=1, description="Planned duration in days")
    assignee_ids: List[int] = Field(default_factory=list)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return _parse_status(v) or TaskStatus.TODO

    @field_validator("due_date", "start_date")
    @classmethod
    def normalize_dates(cls, v):
        return to_naive_utc(v)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[TaskStatus] = None
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=1)
    assignee_ids: Optional[List[int]] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return _parse_status(v)

    @field_validator("due_date", "start_date")
    @classmethod
    def normalize_dates(cls, v):
        return to_naive_utc(v)


class TaskRead(BaseModel):
    id: int
    project_id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    due_date: Optional[datetime] = None
    start_date: Optional[datetime] = None
    duration: Optional[int] = None
    flagged: bool = False
    flagged_by_user_id: Optional[int] = None
    assignee_ids: List[int] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
