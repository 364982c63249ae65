from fastapi import APIRouter, Depends, status
from sqlmodel import Session, select
from sqlalchemy.exc import SQLAlchemyError
import logging

from core.config import Settings, get_app_settings
from core.database import get_session, utcnow
from core.exceptions import AppError, ConflictError, InvalidInputError, NotFoundError
from core.security import (
    build_session_claims, create_token_for_user, get_current_user, hash_password,
)
from models.models import EmailVerification, User, UserRole
from schemas.user_schema import TokenResponse, UserCreate, UserLogin, UserRead, VerifyEmailRequest
from services.access_controller import (
    authorize, build_verify_link, issue_email_verification, request_sponsorship, start_free_trial,
)
from services.email_service import (
    EmailService, get_email_service, sponsorship_request_email, verify_email_message,
)

router = APIRouter(prefix="/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)

SIGNUP_ROLES = (UserRole.SUPERVISOR, UserRole.STUDENT, UserRole.COLLABORATOR)


# ==========================================================
# ✅ Signup - supervisors start a trial, members ask for sponsorship
# ==========================================================
@router.post("/signup", status_code=status.HTTP_201_CREATED)
def signup(
    user_data: UserCreate,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    mailer: EmailService = Depends(get_email_service),
):
    name = user_data.name.strip()
    email = user_data.email.strip().lower()
    role = user_data.account_type

    if not name:
        raise InvalidInputError("Name is required")
    if role not in SIGNUP_ROLES:
        raise InvalidInputError("Invalid account type")

    sponsor_email = (user_data.sponsor_email or "").strip().lower()
    if role != UserRole.SUPERVISOR and not sponsor_email:
        raise InvalidInputError("Please provide the email address of your supervisor")

    user = session.exec(select(User).where(User.email == email)).first()
    if user and user.password_hash:
        raise ConflictError("An account with this email already exists")

    supervisor = None
    if role != UserRole.SUPERVISOR:
        supervisor = session.exec(select(User).where(User.email == sponsor_email)).first()
        if not supervisor or supervisor.role not in (UserRole.SUPERVISOR, UserRole.ADMIN):
            raise NotFoundError("We couldn't find a supervisor with that email address")

    now = utcnow()
    try:
        # Placeholder accounts (added to a project before signing up) are claimed
        if user is None:
            user = User(email=email, created_at=now)
        claimed_sponsorship = (
            role != UserRole.SUPERVISOR and user.sponsor_id is not None
        )

        user.name = name
        user.password_hash = hash_password(user_data.password)
        user.role = role

        if role == UserRole.SUPERVISOR:
            start_free_trial(user, settings.FREE_TRIAL_DAYS, now)
            message = (
                f"Welcome to ProjectDesk! Confirm your email and start your free "
                f"{settings.FREE_TRIAL_DAYS}-day trial."
            )
        elif claimed_sponsorship:
            message = "Account created. Please check your email to activate it."
        else:
            request_sponsorship(user, supervisor)
            message = (
                "Account created. Please verify your email while we notify your "
                "supervisor for sponsorship approval."
            )

        session.add(user)
        session.flush()
        verification = issue_email_verification(
            session, user, settings.EMAIL_VERIFICATION_EXPIRE_HOURS, now
        )
        session.commit()
        session.refresh(user)
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("❌ Database error during signup: %s", e)
        raise AppError(
            "Something went wrong while creating your account. Please try again later.",
            status_code=500,
        )

    logger.info("📝 Signup completed for user %s (%s)", user.id, role.value)

    # ✅ Notifications only after the account is stored
    if supervisor is not None and not claimed_sponsorship:
        subject, body = sponsorship_request_email(name, email, role.value)
        mailer.send(supervisor.email, subject, body)

    subject, body = verify_email_message(name, build_verify_link(settings, verification.token), welcome=True)
    mailer.send(email, subject, body)

    return {"message": message, "user": UserRead.model_validate(user)}


# ==========================================================
# ✅ Verify email
# ==========================================================
@router.post("/verify-email")
def verify_email(data: VerifyEmailRequest, session: Session = Depends(get_session)):
    verification = session.exec(
        select(EmailVerification).where(EmailVerification.token == data.token)
    ).first()
    if not verification:
        raise InvalidInputError("Invalid verification link")

    now = utcnow()
    if verification.expires_at < now:
        session.delete(verification)
        session.commit()
        raise InvalidInputError("This verification link has expired. Sign in to receive a new one.")

    user = session.get(User, verification.user_id)
    if not user:
        raise NotFoundError("User not found")

    user.email_verified_at = now
    session.add(user)
    session.delete(verification)
    session.commit()

    logger.info("📧 Email verified for user %s", user.id)
    return {"message": "Email verified. You can now sign in."}


# ==========================================================
# ✅ Login - runs the authentication gate
# ==========================================================
@router.post("/login", response_model=TokenResponse)
def login(
    credentials: UserLogin,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    mailer: EmailService = Depends(get_email_service),
):
    user = authorize(session, credentials.email, credentials.password, settings, mailer)

    return {
        "access_token": create_token_for_user(user, settings),
        "token_type": "bearer",
        "user": user,
        "claims": build_session_claims(user),
    }


# ==========================================================
# ✅ Current user
# ==========================================================
@router.get("/me", response_model=UserRead)
def read_current_user(current_user: User = Depends(get_current_user)):
    return current_user
