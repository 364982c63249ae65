# routes/tasks.py
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
from typing import List, Optional
import logging

from core.database import get_session, utcnow
from core.exceptions import ConflictError, InvalidInputError, NotFoundError, PermissionDeniedError
from core.payment_utils import get_active_user
from models.models import Project, Task, User
from schemas.task_schema import TaskCreate, TaskRead, TaskUpdate
from services.project_service import can_manage_project, can_view_project, refresh_project_status

router = APIRouter(prefix="/tasks", tags=["Tasks"])
logger = logging.getLogger(__name__)

DUPLICATE_TITLE = "A task with this title already exists in this project"


# ==================================================================
#  ✅ Helpers
# ==================================================================
def serialize_task(task: Task) -> TaskRead:
    return TaskRead(
        id=task.id,
        project_id=task.project_id,
        title=task.title,
        description=task.description,
        status=task.status,
        due_date=task.due_date,
        start_date=task.start_date,
        duration=task.duration,
        flagged=task.flagged,
        flagged_by_user_id=task.flagged_by_user_id,
        assignee_ids=[u.id for u in task.assignees],
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def _get_project(session: Session, project_id: int, user: User) -> Project:
    project = session.get(Project, project_id)
    if not project:
        raise NotFoundError("Project not found")
    if not can_view_project(project, user):
        raise PermissionDeniedError("You do not have access to this project")
    return project


def _get_task(session: Session, task_id: int, user: User) -> Task:
    task = session.get(Task, task_id)
    if not task:
        raise NotFoundError("Task not found")
    _get_project(session, task.project_id, user)
    return task


def _ensure_unique_title(session: Session, project_id: int, title: str, exclude_id: Optional[int] = None) -> None:
    query = select(Task).where(Task.project_id == project_id, Task.title == title)
    if exclude_id is not None:
        query = query.where(Task.id != exclude_id)
    if session.exec(query).first():
        raise ConflictError(DUPLICATE_TITLE)


def _resolve_assignees(session: Session, project: Project, assignee_ids: List[int]) -> List[User]:
    """Assignees must be project members or the project's supervisor."""
    allowed = {project.supervisor_id} | {u.id for u in project.students} | {u.id for u in project.collaborators}
    assignees = []
    for user_id in dict.fromkeys(assignee_ids):
        if user_id not in allowed:
            raise InvalidInputError(f"User {user_id} is not a member of this project")
        user = session.get(User, user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        assignees.append(user)
    return assignees


def _commit_task_change(session: Session) -> None:
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError(DUPLICATE_TITLE)


# ==================================================================
#  ✅ Create Task
# ==================================================================
@router.post("/", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    data: TaskCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    project = _get_project(session, data.project_id, current_user)
    if not can_manage_project(project, current_user):
        raise PermissionDeniedError("Only the project supervisor can add tasks")

    title = data.title.strip()
    _ensure_unique_title(session, project.id, title)

    now = utcnow()
    task = Task(
        title=title,
        description=data.description,
        status=data.status,
        due_date=data.due_date,
        start_date=data.start_date,
        duration=data.duration,
        created_at=now,
        updated_at=now,
    )
    task.assignees = _resolve_assignees(session, project, data.assignee_ids)
    task.project = project
    session.add(task)

    refresh_project_status(session, project, now)
    _commit_task_change(session)
    session.refresh(task)

    logger.info("📝 Task %s created in project %s", task.id, project.id)
    return serialize_task(task)


# ==================================================================
#  ✅ List / Get Tasks
# ==================================================================
@router.get("/", response_model=List[TaskRead])
def list_tasks(
    project_id: int = Query(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    _get_project(session, project_id, current_user)
    tasks = session.exec(
        select(Task).where(Task.project_id == project_id).order_by(Task.due_date, Task.id)
    ).all()
    return [serialize_task(t) for t in tasks]


@router.get("/{task_id}", response_model=TaskRead)
def get_task(
    task_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    return serialize_task(_get_task(session, task_id, current_user))


# ==================================================================
#  ✅ Update Task (assignees, supervisor or admin)
# ==================================================================
@router.put("/{task_id}", response_model=TaskRead)
def update_task(
    task_id: int,
    data: TaskUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    task = _get_task(session, task_id, current_user)
    project = task.project
    is_assignee = any(u.id == current_user.id for u in task.assignees)
    if not (is_assignee or can_manage_project(project, current_user)):
        raise PermissionDeniedError("You cannot edit this task")

    fields = data.model_fields_set
    if data.title is not None:
        title = data.title.strip()
        if title != task.title:
            _ensure_unique_title(session, project.id, title, exclude_id=task.id)
            task.title = title
    if data.description is not None:
        task.description = data.description
    if data.status is not None:
        task.status = data.status
    for field in ("due_date", "start_date", "duration"):
        if field in fields:
            setattr(task, field, getattr(data, field))
    if data.assignee_ids is not None:
        if not can_manage_project(project, current_user):
            raise PermissionDeniedError("Only the project supervisor can change assignees")
        task.assignees = _resolve_assignees(session, project, data.assignee_ids)

    now = utcnow()
    task.updated_at = now
    session.add(task)

    refresh_project_status(session, project, now)
    _commit_task_change(session)
    session.refresh(task)
    return serialize_task(task)


# ==================================================================
#  ✅ Flag Task (toggle)
# ==================================================================
@router.post("/{task_id}/flag", response_model=TaskRead)
def flag_task(
    task_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    task = _get_task(session, task_id, current_user)
    task.flagged = not task.flagged
    task.flagged_by_user_id = current_user.id if task.flagged else None
    task.updated_at = utcnow()
    session.add(task)
    session.commit()
    session.refresh(task)
    return serialize_task(task)


# ==================================================================
#  ✅ Delete Task
# ==================================================================
@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    task = _get_task(session, task_id, current_user)
    project = task.project
    if not can_manage_project(project, current_user):
        raise PermissionDeniedError("Only the project supervisor can delete tasks")

    project.tasks.remove(task)
    refresh_project_status(session, project)
    session.commit()
    logger.info("🗑️ Task %s deleted from project %s", task_id, project.id)
