# routes/profile.py
from fastapi import APIRouter, Depends
from sqlmodel import Session
import logging

from core.database import get_session
from core.exceptions import AppError, InvalidInputError
from core.security import get_current_user
from models.models import User
from schemas.profile_schema import LockoutRead, ProfileRead
from schemas.user_schema import UserRead
from services.access_controller import evaluate_lockout
from services.email_service import EmailService, get_email_service, sponsor_inactive_email

router = APIRouter(prefix="/profile", tags=["Profile"])
logger = logging.getLogger(__name__)


def serialize_profile(session: Session, user: User) -> ProfileRead:
    """User record plus the lockout state, evaluated from storage."""
    session.refresh(user)
    sponsor = session.get(User, user.sponsor_id) if user.sponsor_id else None
    lockout = evaluate_lockout(user)
    return ProfileRead(
        **UserRead.model_validate(user).model_dump(),
        sponsor_name=sponsor.display_name if sponsor else None,
        sponsor_email=sponsor.email if sponsor else None,
        lockout=LockoutRead(locked=lockout.locked, reason=lockout.reason, message=lockout.message),
    )


# ==================================================================
#  ✅  Get Current User Profile (lockout re-evaluated every call)
# ==================================================================
@router.get("/me", response_model=ProfileRead)
def get_my_profile(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return serialize_profile(session, current_user)


# ==================================================================
#  ✅  Ask an inactive sponsor to restart billing
# ==================================================================
@router.post("/notify-sponsor")
def notify_sponsor(
    current_user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    sponsor = session.get(User, current_user.sponsor_id) if current_user.sponsor_id else None
    if not sponsor:
        raise InvalidInputError("No sponsor found for this account")
    if not current_user.sponsor_subscription_inactive:
        raise InvalidInputError("Sponsor subscription is already active")

    subject, body = sponsor_inactive_email(sponsor.name, current_user.display_name, current_user.email)
    if not mailer.send(sponsor.email, subject, body):
        logger.error("❌ Failed to notify sponsor %s for user %s", sponsor.id, current_user.id)
        raise AppError("Unable to send notification email", status_code=500)

    return {"ok": True}
