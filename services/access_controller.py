# ================================================================
# services/access_controller.py - authentication gate, post-login
# lockout and sponsorship transitions
# ================================================================
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, List, Optional
import logging

from sqlalchemy import func, update
from sqlmodel import Session, select

from core.config import Settings
from core.database import utcnow
from core.exceptions import (
    AuthenticationError,
    ConflictError,
    InvalidInputError,
    PermissionDeniedError,
    SponsorLimitError,
)
from core.security import generate_verification_token, verify_password
from models.models import EmailVerification, SubscriptionType, User, UserRole
from services.email_service import EmailService, verify_email_message

logger = logging.getLogger(__name__)

SUPERVISOR_SPONSOR_LIMIT = 50

SPONSORING_SUBSCRIPTIONS = frozenset({SubscriptionType.SUBSCRIBED, SubscriptionType.ADMIN_APPROVED})
SPONSORABLE_ROLES = frozenset({UserRole.STUDENT, UserRole.COLLABORATOR})


def can_sponsor_accounts(user: User) -> bool:
    return user.subscription_type in SPONSORING_SUBSCRIPTIONS


# ============================================================
# ✅ Email verification tokens
# ============================================================
def issue_email_verification(
    session: Session,
    user: User,
    expires_in_hours: int,
    now: Optional[datetime] = None,
) -> EmailVerification:
    """Replace any outstanding verification token for the user. Caller commits."""
    now = now or utcnow()
    for old in session.exec(select(EmailVerification).where(EmailVerification.user_id == user.id)).all():
        session.delete(old)

    verification = EmailVerification(
        user_id=user.id,
        token=generate_verification_token(),
        expires_at=now + timedelta(hours=expires_in_hours),
        created_at=now,
    )
    session.add(verification)
    return verification


def build_verify_link(settings: Settings, token: str) -> str:
    return f"{settings.FRONTEND_URL.rstrip('/')}/verify-email?token={token}"


# ============================================================
# ✅ Authentication gate
# ============================================================
def authorize(
    session: Session,
    email: str,
    password: str,
    settings: Settings,
    mailer: Optional[EmailService] = None,
    now: Optional[datetime] = None,
) -> User:
    """
    Run the login checks in order and return the user, or raise
    AuthenticationError with the message of the first failing check.

    An unverified account gets a fresh verification email before the
    attempt is rejected; that token is committed even though login fails.
    """
    now = now or utcnow()
    user = session.exec(select(User).where(User.email == email.strip().lower())).first()

    if not user or not user.password_hash:
        raise AuthenticationError("No user found", status_code=404)

    if not verify_password(password, user.password_hash):
        raise AuthenticationError("Invalid password", status_code=401)

    if not user.is_email_verified:
        verification = issue_email_verification(
            session, user, settings.LOGIN_VERIFICATION_EXPIRE_HOURS, now
        )
        session.commit()
        if mailer is not None:
            subject, body = verify_email_message(user.name, build_verify_link(settings, verification.token))
            mailer.send(user.email, subject, body)
        raise AuthenticationError("Email not verified", status_code=403)

    if user.is_awaiting_sponsorship:
        raise AuthenticationError("Awaiting sponsorship approval", status_code=403)

    if (
        user.subscription_type == SubscriptionType.FREE_TRIAL
        and user.subscription_expires_at is not None
        and user.subscription_expires_at < now
    ):
        raise AuthenticationError("Your free trial has ended", status_code=403)

    if settings.REJECT_CANCELLED_AT_LOGIN and user.subscription_type == SubscriptionType.CANCELLED:
        raise AuthenticationError("Subscription cancelled", status_code=403)

    logger.info("🔓 Login accepted for user %s", user.id)
    return user


# ============================================================
# ✅ Post-login lockout
# ============================================================
@dataclass(frozen=True)
class LockoutState:
    locked: bool = False
    reason: Optional[str] = None
    message: Optional[str] = None


SUBSCRIPTION_CANCELLED = "subscription_cancelled"
SPONSOR_INACTIVE = "sponsor_inactive"


def evaluate_lockout(user: User) -> LockoutState:
    """Feature access gate, evaluated against the stored record on every call."""
    if user.role == UserRole.SUPERVISOR and user.subscription_type == SubscriptionType.CANCELLED:
        return LockoutState(
            True,
            SUBSCRIPTION_CANCELLED,
            "Your subscription has been cancelled. Restart it to regain access.",
        )
    if user.subscription_type == SubscriptionType.SPONSORED and user.sponsor_subscription_inactive:
        return LockoutState(
            True,
            SPONSOR_INACTIVE,
            "Your sponsor's subscription is inactive. Ask them to restart it to regain access.",
        )
    return LockoutState()


# ============================================================
# ✅ Signup transitions
# ============================================================
def start_free_trial(user: User, trial_days: int, now: Optional[datetime] = None) -> None:
    now = now or utcnow()
    user.subscription_type = SubscriptionType.FREE_TRIAL
    user.subscription_started_at = now
    user.subscription_expires_at = now + timedelta(days=trial_days)
    user.sponsor_id = None
    user.supervisor_id = None
    user.sponsor_subscription_inactive = False


def request_sponsorship(user: User, supervisor: User) -> None:
    """New student/collaborator waits for the supervisor to approve."""
    user.subscription_type = SubscriptionType.SPONSORED
    user.sponsor_id = None
    user.supervisor_id = supervisor.id
    user.subscription_started_at = None
    user.subscription_expires_at = None
    user.sponsor_subscription_inactive = False


# ============================================================
# ✅ Sponsorship grants
# ============================================================
def count_sponsored_users(session: Session, sponsor_id: int) -> int:
    return session.exec(
        select(func.count(User.id)).where(User.sponsor_id == sponsor_id)
    ).one()


def _check_targets(sponsor: User, targets: Iterable[User]) -> List[User]:
    checked = []
    seen = set()
    for target in targets:
        if target.id in seen:
            continue
        seen.add(target.id)
        if target.id == sponsor.id:
            raise InvalidInputError("You cannot sponsor your own account")
        if target.role not in SPONSORABLE_ROLES:
            raise InvalidInputError(f"{target.email} is not a student or collaborator account")
        if target.sponsor_id is not None and target.sponsor_id != sponsor.id:
            raise ConflictError(f"{target.email} is already sponsored by another supervisor")
        checked.append(target)
    return checked


def _claim_sponsor_slots(session: Session, sponsor: User, additional: int) -> None:
    """
    Check the sponsor limit and bump the sponsor's version row in the same
    transaction. A concurrent grant that committed since the version was read
    makes the guarded UPDATE match no row.
    """
    version = sponsor.sponsorship_version or 0
    current = count_sponsored_users(session, sponsor.id)

    if current + additional > SUPERVISOR_SPONSOR_LIMIT:
        raise SponsorLimitError(
            f"Sponsor limit reached: {current} of {SUPERVISOR_SPONSOR_LIMIT} accounts already sponsored"
        )

    result = session.connection().execute(
        update(User)
        .where(User.id == sponsor.id, User.sponsorship_version == version)
        .values(sponsorship_version=version + 1)
    )
    if result.rowcount != 1:
        session.rollback()
        logger.warning("⚠️ Concurrent sponsorship change detected for sponsor %s", sponsor.id)
        raise ConflictError("Sponsorships changed while saving, please try again")

    session.expire(sponsor, ["sponsorship_version"])


def grant_sponsorships(
    session: Session,
    sponsor: User,
    targets: Iterable[User],
    now: Optional[datetime] = None,
) -> List[User]:
    """
    Make `sponsor` the sponsor of every target. Returns the targets that were
    not already sponsored by them. Caller commits.
    """
    now = now or utcnow()
    checked = _check_targets(sponsor, targets)
    newly_sponsored = [t for t in checked if t.sponsor_id is None]

    if newly_sponsored:
        if not can_sponsor_accounts(sponsor):
            raise PermissionDeniedError("An active subscription is required to sponsor accounts")
        _claim_sponsor_slots(session, sponsor, len(newly_sponsored))

    for target in checked:
        target.sponsor_id = sponsor.id
        target.supervisor_id = sponsor.id
        target.subscription_type = SubscriptionType.SPONSORED
        target.subscription_expires_at = None
        if target.subscription_started_at is None:
            target.subscription_started_at = now
        target.sponsor_subscription_inactive = False
        session.add(target)

    return newly_sponsored


# ============================================================
# ✅ Sponsorship removal / decline
# ============================================================
def _revert_to_expired_trial(user: User, now: datetime) -> None:
    user.subscription_type = SubscriptionType.FREE_TRIAL
    user.subscription_expires_at = now
    user.sponsor_id = None
    user.supervisor_id = None
    user.sponsor_subscription_inactive = False


def remove_sponsorship(session: Session, sponsor: User, target: User, now: Optional[datetime] = None) -> None:
    if target.sponsor_id != sponsor.id and sponsor.role != UserRole.ADMIN:
        raise PermissionDeniedError("You do not sponsor this account")
    if (
        target.sponsor_id is None
        or target.subscription_type != SubscriptionType.SPONSORED
        or target.role not in SPONSORABLE_ROLES
    ):
        raise InvalidInputError("This account is not sponsored")
    _revert_to_expired_trial(target, now or utcnow())
    session.add(target)


def decline_request(session: Session, supervisor: User, target: User, now: Optional[datetime] = None) -> None:
    if not target.is_awaiting_sponsorship:
        raise InvalidInputError("There is no pending sponsorship request for this account")
    if target.supervisor_id != supervisor.id and supervisor.role != UserRole.ADMIN:
        raise PermissionDeniedError("This request was not sent to you")
    _revert_to_expired_trial(target, now or utcnow())
    session.add(target)
