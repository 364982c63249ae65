# routes/admin.py
from datetime import timedelta
from typing import Dict, List
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlmodel import Session, select

from core.database import get_session, utcnow
from core.exceptions import BillingProviderError, ConflictError, InvalidInputError, NotFoundError
from core.security import get_current_admin
from models.models import (
    BillingRedirectFlow, EmailVerification, Project, ProjectCollaboratorLink, ProjectStudentLink,
    SubscriptionType, Task, TaskAssignmentLink, User, UserRole,
)
from schemas.billing_schema import SponsorAlert, SubscriptionMetrics
from schemas.user_schema import AdminUserUpdate, SubscriptionOverride, UserRead
from services.access_controller import count_sponsored_users
from services.billing_service import GoCardlessClient, get_billing_client

router = APIRouter(prefix="/admin", tags=["Admin"])
logger = logging.getLogger(__name__)

TRIAL_ALERT_WINDOW = timedelta(days=7)


def _get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


# ----------------------------------------------------------------------
# ✅ List / Update Users
# ----------------------------------------------------------------------
@router.get("/users", response_model=List[UserRead])
def list_users(
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    return session.exec(select(User).order_by(User.email)).all()


@router.put("/users/{user_id}", response_model=UserRead)
def update_user(
    user_id: int,
    user_update: AdminUserUpdate,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    user = _get_user(session, user_id)
    fields = user_update.model_fields_set
    if not fields:
        raise InvalidInputError("No updates provided")

    if user_update.email is not None:
        email = user_update.email.strip().lower()
        if email != user.email:
            if session.exec(select(User).where(User.email == email)).first():
                raise ConflictError("Email already registered.")
            user.email = email
    if "name" in fields:
        user.name = user_update.name.strip() if user_update.name else None
    if user_update.role is not None:
        user.role = user_update.role

    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("🛠️ Admin %s updated user %s", current_admin.id, user.id)
    return user


# ----------------------------------------------------------------------
# ✅ Manual subscription override (no side effects)
# ----------------------------------------------------------------------
@router.put("/users/{user_id}/subscription", response_model=UserRead)
def override_subscription(
    user_id: int,
    data: SubscriptionOverride,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    user = _get_user(session, user_id)
    user.subscription_type = data.subscription_type
    if "subscription_expires_at" in data.model_fields_set:
        user.subscription_expires_at = data.subscription_expires_at
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info(
        "🛠️ Admin %s set subscription of user %s to %s",
        current_admin.id, user.id, user.subscription_type.value,
    )
    return user


# ----------------------------------------------------------------------
# ✅ Delete User
# ----------------------------------------------------------------------
def _cancel_billing_best_effort(billing: GoCardlessClient, user: User) -> None:
    if user.billing_subscription_id:
        try:
            billing.cancel_subscription(user.billing_subscription_id)
        except BillingProviderError as e:
            logger.error("❌ GoCardless cancel before delete failed for user %s: %s", user.id, e.message)
    if user.billing_mandate_id:
        try:
            billing.cancel_mandate(user.billing_mandate_id)
        except BillingProviderError as e:
            logger.error("❌ GoCardless cancel mandate before delete failed for user %s: %s", user.id, e.message)


def _detach_user(session: Session, user_id: int) -> None:
    for model in (ProjectStudentLink, ProjectCollaboratorLink, TaskAssignmentLink):
        for link in session.exec(select(model).where(model.user_id == user_id)).all():
            session.delete(link)
    for model in (EmailVerification, BillingRedirectFlow):
        for record in session.exec(select(model).where(model.user_id == user_id)).all():
            session.delete(record)
    for task in session.exec(select(Task).where(Task.flagged_by_user_id == user_id)).all():
        task.flagged = False
        task.flagged_by_user_id = None
        session.add(task)
    for user in session.exec(select(User).where(User.supervisor_id == user_id)).all():
        user.supervisor_id = None
        session.add(user)


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
    billing: GoCardlessClient = Depends(get_billing_client),
):
    user = _get_user(session, user_id)
    if user.id == current_admin.id:
        raise InvalidInputError("You cannot delete your own account")

    supervised = session.exec(
        select(func.count(Project.id)).where(Project.supervisor_id == user.id)
    ).one()
    if supervised > 0:
        raise InvalidInputError(
            "This user supervises active projects. Reassign or archive those projects before deleting the account."
        )
    if count_sponsored_users(session, user.id) > 0:
        raise InvalidInputError(
            "This user sponsors other accounts. Remove their sponsorships before deleting the account."
        )

    _cancel_billing_best_effort(billing, user)

    _detach_user(session, user.id)
    session.delete(user)
    session.commit()
    logger.info("🗑️ Admin %s deleted user %s", current_admin.id, user_id)
    return {"ok": True}


# ----------------------------------------------------------------------
# ✅ Subscription metrics
# ----------------------------------------------------------------------
@router.get("/subscription-metrics", response_model=SubscriptionMetrics)
def subscription_metrics(
    session: Session = Depends(get_session),
    current_admin: User = Depends(get_current_admin),
):
    now = utcnow()

    counts: Dict[str, int] = {t.value: 0 for t in SubscriptionType}
    for subscription_type, count in session.exec(
        select(User.subscription_type, func.count(User.id)).group_by(User.subscription_type)
    ).all():
        counts[SubscriptionType(subscription_type).value] = count

    trials_ending_soon = session.exec(
        select(func.count(User.id)).where(
            User.role == UserRole.SUPERVISOR,
            User.subscription_type == SubscriptionType.FREE_TRIAL,
            User.subscription_expires_at >= now,
            User.subscription_expires_at <= now + TRIAL_ALERT_WINDOW,
        )
    ).one()

    cancelled_supervisors = session.exec(
        select(func.count(User.id)).where(
            User.role == UserRole.SUPERVISOR,
            User.subscription_type == SubscriptionType.CANCELLED,
        )
    ).one()

    alerts = []
    for user in session.exec(
        select(User).where(User.sponsor_subscription_inactive == True).order_by(User.created_at.desc())  # noqa: E712
    ).all():
        sponsor = session.get(User, user.sponsor_id) if user.sponsor_id else None
        alerts.append(
            SponsorAlert(
                user_id=user.id,
                email=user.email,
                sponsor_id=user.sponsor_id,
                sponsor_email=sponsor.email if sponsor else None,
            )
        )

    provider_status_counts = {
        status: count
        for status, count in session.exec(
            select(User.billing_subscription_status, func.count(User.id))
            .where(User.billing_subscription_status.is_not(None))
            .group_by(User.billing_subscription_status)
        ).all()
    }

    return SubscriptionMetrics(
        counts_by_type=counts,
        active_subscribers=counts[SubscriptionType.SUBSCRIBED.value] + counts[SubscriptionType.ADMIN_APPROVED.value],
        trials_ending_soon=trials_ending_soon,
        cancelled_supervisors=cancelled_supervisors,
        sponsor_alerts=alerts,
        provider_status_counts=provider_status_counts,
    )
