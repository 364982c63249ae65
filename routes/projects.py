# routes/projects.py
from fastapi import APIRouter, Depends, Query, status
from sqlmodel import Session, select
from typing import List, Optional
import logging

from core.database import get_session, utcnow
from core.exceptions import ConflictError, NotFoundError, PermissionDeniedError
from core.payment_utils import get_active_supervisor, get_active_user
from models.models import Project, ProjectStatus, TaskStatus, User, UserRole
from schemas.project_schema import ProjectCreate, ProjectRead, ProjectStatusRead, ProjectUpdate
from services.access_controller import grant_sponsorships
from services.email_service import EmailService, get_email_service, project_invitation_email
from services.project_service import (
    can_manage_project, can_view_project, refresh_project_status, resolve_members,
    sponsorable_members, status_details, visible_projects_query,
)

router = APIRouter(prefix="/projects", tags=["Projects"])
logger = logging.getLogger(__name__)


# ==================================================================
#  ✅ Helpers
# ==================================================================
def _get_visible_project(session: Session, project_id: int, user: User) -> Project:
    project = session.get(Project, project_id)
    if not project:
        raise NotFoundError("Project not found")
    if not can_view_project(project, user):
        raise PermissionDeniedError("You do not have access to this project")
    return project


def _get_managed_project(session: Session, project_id: int, user: User) -> Project:
    project = _get_visible_project(session, project_id, user)
    if not can_manage_project(project, user):
        raise PermissionDeniedError("Only the project supervisor can change this project")
    return project


def _split_members(session: Session, students_in, collaborators_in):
    """Resolve both member lists; anyone listed as a collaborator is only a collaborator."""
    collaborators = resolve_members(session, collaborators_in, UserRole.COLLABORATOR)
    collaborator_ids = {user.id for user, _ in collaborators}
    students = [
        entry for entry in resolve_members(session, students_in, UserRole.STUDENT)
        if entry[0].id not in collaborator_ids
    ]
    return students, collaborators


def _send_invitations(mailer: EmailService, project_title: str, invited_by: str, users: List[User]) -> None:
    for user in users:
        subject, body = project_invitation_email(user.name, project_title, invited_by)
        mailer.send(user.email, subject, body)


# ==================================================================
#  ✅ Create New Project
# ==================================================================
@router.post("/", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
def create_project(
    data: ProjectCreate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_supervisor),
    mailer: EmailService = Depends(get_email_service),
):
    now = utcnow()
    students, collaborators = _split_members(session, data.students, data.collaborators)
    members = students + collaborators

    # Sponsorship gate runs in the same transaction as the project insert
    grant_sponsorships(session, current_user, sponsorable_members(members), now)

    project = Project(
        title=data.title.strip(),
        description=data.description,
        start_date=data.start_date,
        end_date=data.end_date,
        category=data.category or "student-project",
        supervisor_id=current_user.id,
        created_at=now,
        updated_at=now,
    )
    project.students = [user for user, _ in students]
    project.collaborators = [user for user, _ in collaborators]
    session.add(project)
    session.commit()
    session.refresh(project)

    logger.info("📁 Project %s created by user %s with %s members", project.id, current_user.id, len(members))

    _send_invitations(mailer, project.title, current_user.email, [user for user, _ in members])
    return ProjectRead.model_validate(project)


# ==================================================================
#  ✅ List Projects (status recomputed on read)
# ==================================================================
@router.get("/", response_model=List[ProjectRead])
def list_projects(
    category: Optional[str] = Query(default=None),
    is_completed: Optional[bool] = Query(default=None),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    query = visible_projects_query(current_user)
    if category:
        query = query.where(Project.category == category)
    if is_completed is not None:
        query = query.where(Project.is_completed == is_completed)
    query = query.order_by(Project.end_date, Project.title)

    projects = session.exec(query).all()

    now = utcnow()
    changed = [p for p in projects if refresh_project_status(session, p, now)]
    if changed:
        session.commit()

    return [ProjectRead.model_validate(p) for p in projects]


# ==================================================================
#  ✅ Get Project
# ==================================================================
@router.get("/{project_id}", response_model=ProjectRead)
def get_project(
    project_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    project = _get_visible_project(session, project_id, current_user)
    if refresh_project_status(session, project):
        session.commit()
        session.refresh(project)
    return ProjectRead.model_validate(project)


# ==================================================================
#  ✅ Status details (label + the task sets behind it)
# ==================================================================
@router.get("/{project_id}/status", response_model=ProjectStatusRead)
def get_project_status(
    project_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    project = _get_visible_project(session, project_id, current_user)
    if refresh_project_status(session, project):
        session.commit()
        session.refresh(project)
    return status_details(project)


# ==================================================================
#  ✅ Update Project
# ==================================================================
@router.put("/{project_id}", response_model=ProjectRead)
def update_project(
    project_id: int,
    data: ProjectUpdate,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
    mailer: EmailService = Depends(get_email_service),
):
    project = _get_managed_project(session, project_id, current_user)
    now = utcnow()
    previous_member_ids = {u.id for u in project.students} | {u.id for u in project.collaborators}

    if data.title is not None:
        project.title = data.title.strip()
    if data.description is not None:
        project.description = data.description
    if data.category is not None:
        project.category = data.category
    if data.archived is not None:
        project.archived = data.archived

    fields = data.model_fields_set
    dates_changed = False
    if "start_date" in fields and data.start_date != project.start_date:
        project.start_date = data.start_date
        dates_changed = True
    if "end_date" in fields and data.end_date != project.end_date:
        project.end_date = data.end_date
        dates_changed = True

    added: List[User] = []
    if data.students is not None or data.collaborators is not None:
        students, collaborators = _split_members(
            session,
            data.students if data.students is not None else [
                u for u in project.students
            ],
            data.collaborators if data.collaborators is not None else [
                u for u in project.collaborators
            ],
        )
        members = students + collaborators
        grant_sponsorships(session, project.supervisor or current_user, sponsorable_members(members), now)
        project.students = [user for user, _ in students]
        project.collaborators = [user for user, _ in collaborators]
        added = [user for user, _ in members if user.id not in previous_member_ids]

    project.updated_at = now
    session.add(project)
    if dates_changed:
        refresh_project_status(session, project, now)
    session.commit()
    session.refresh(project)

    _send_invitations(mailer, project.title, current_user.email, added)
    return ProjectRead.model_validate(project)


# ==================================================================
#  ✅ Complete / Reactivate
# ==================================================================
@router.post("/{project_id}/complete", response_model=ProjectRead)
def complete_project(
    project_id: int,
    force: bool = Query(default=False),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    project = _get_managed_project(session, project_id, current_user)

    active = [t for t in project.tasks if not (TaskStatus.parse(t.status) or TaskStatus.TODO).is_done]
    if active and not force:
        raise ConflictError(f"Project still has {len(active)} active task(s). Complete them or force completion.")

    project.is_completed = True
    project.status = ProjectStatus.COMPLETED
    project.updated_at = utcnow()
    session.add(project)
    session.commit()
    session.refresh(project)
    logger.info("🏁 Project %s completed (forced=%s)", project.id, bool(active))
    return ProjectRead.model_validate(project)


@router.post("/{project_id}/reactivate", response_model=ProjectRead)
def reactivate_project(
    project_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    project = _get_managed_project(session, project_id, current_user)
    now = utcnow()
    project.is_completed = False
    project.updated_at = now
    session.add(project)
    refresh_project_status(session, project, now)
    session.commit()
    session.refresh(project)
    return ProjectRead.model_validate(project)


# ==================================================================
#  ✅ Delete Project
# ==================================================================
@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_active_user),
):
    project = _get_managed_project(session, project_id, current_user)
    session.delete(project)
    session.commit()
    logger.info("🗑️ Project %s deleted by user %s", project_id, current_user.id)
