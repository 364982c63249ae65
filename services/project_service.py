# ================================================================
# services/project_service.py - membership resolution and status
# write-back for projects
# ================================================================
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from sqlmodel import Session, select

from core.database import utcnow
from models.models import Project, ProjectStatus, User, UserRole
from services.status_engine import TaskSnapshot, collect_signals, status_from_signals

logger = logging.getLogger(__name__)


# ============================================================
# ✅ Status write-back
# ============================================================
def refresh_project_status(session: Session, project: Project, now: Optional[datetime] = None) -> bool:
    """
    Recompute the stored status from the project's tasks. Completed projects
    keep their stored value. Returns True when the stored value changed;
    writing is skipped when the label is unchanged. Caller commits.
    """
    if project.is_completed:
        return False

    now = now or utcnow()
    label = status_from_signals(
        collect_signals([TaskSnapshot.from_task(t) for t in project.tasks], project.end_date, now)
    )
    if label == project.status:
        return False

    logger.info("📊 Project %s status %s -> %s", project.id, project.status.value, label.value)
    project.status = label
    project.updated_at = now
    session.add(project)
    return True


def status_details(project: Project, now: Optional[datetime] = None) -> Dict:
    """Label plus the task-set counts behind it."""
    signals = collect_signals(
        [TaskSnapshot.from_task(t) for t in project.tasks], project.end_date, now or utcnow()
    )
    return {
        "project_id": project.id,
        "status": ProjectStatus.COMPLETED if project.is_completed else status_from_signals(signals),
        "total_tasks": signals.total_tasks,
        "completed_tasks": signals.completed_tasks,
        "overdue": signals.overdue,
        "behind_schedule": signals.behind_schedule,
        "duration_overflow": signals.duration_overflow,
        "beyond_project": signals.beyond_project,
    }


# ============================================================
# ✅ Members
# ============================================================
def _normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    email = email.strip().lower()
    return email or None


def resolve_members(
    session: Session,
    members: Iterable,
    role: UserRole,
) -> List[Tuple[User, bool]]:
    """
    Find or create the users behind a list of member inputs (objects with
    `email` and optional `name`). Unknown emails become placeholder accounts
    without a password; students listed as collaborators are promoted.
    Returns (user, is_new) pairs, one per distinct user. Caller commits.
    """
    resolved: Dict[int, Tuple[User, bool]] = {}

    for member in members or []:
        email = _normalize_email(getattr(member, "email", None))
        if not email:
            continue

        user = session.exec(select(User).where(User.email == email)).first()
        is_new = False
        if not user:
            name = (getattr(member, "name", None) or "").strip() or None
            user = User(email=email, name=name, role=role)
            session.add(user)
            session.flush()
            is_new = True
            logger.info("👤 Placeholder %s account created for %s", role.value, email)
        elif user.role == UserRole.STUDENT and role == UserRole.COLLABORATOR:
            user.role = UserRole.COLLABORATOR
            user.sponsor_subscription_inactive = False
            session.add(user)

        if user.id not in resolved:
            resolved[user.id] = (user, is_new)

    return list(resolved.values())


def sponsorable_members(entries: Iterable[Tuple[User, bool]]) -> List[User]:
    return [
        user for user, _ in entries
        if user.role in (UserRole.STUDENT, UserRole.COLLABORATOR)
    ]


def visible_projects_query(current_user: User):
    """Admins see everything; everyone else sees projects they lead or belong to."""
    query = select(Project)
    if current_user.role == UserRole.ADMIN:
        return query
    return query.where(
        (Project.supervisor_id == current_user.id)
        | Project.students.any(User.id == current_user.id)
        | Project.collaborators.any(User.id == current_user.id)
    )


def can_view_project(project: Project, user: User) -> bool:
    return (
        user.role == UserRole.ADMIN
        or project.supervisor_id == user.id
        or project.has_member(user.id)
    )


def can_manage_project(project: Project, user: User) -> bool:
    return user.role == UserRole.ADMIN or project.supervisor_id == user.id
