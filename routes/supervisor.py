# routes/supervisor.py
from datetime import datetime
from math import ceil
from typing import Optional
import logging

from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from core.config import Settings, get_app_settings
from core.database import get_session, utcnow
from core.exceptions import AppError, BillingProviderError, InvalidInputError, NotFoundError
from core.payment_utils import build_session_token
from core.security import get_current_supervisor
from models.models import BillingRedirectFlow, SubscriptionType, User, UserRole
from schemas.billing_schema import (
    CompleteSubscriptionRequest, ManageSubscriptionResponse, SponsorRequest,
    SponsoredUsersRead, SubscriptionSummary,
)
from schemas.user_schema import UserRead
from services.access_controller import (
    SPONSORABLE_ROLES, SUPERVISOR_SPONSOR_LIMIT, can_sponsor_accounts, count_sponsored_users,
    decline_request, grant_sponsorships, remove_sponsorship,
)
from services.billing_service import GoCardlessClient, get_billing_client
from services.email_service import (
    EmailService, get_email_service, sponsorship_approved_email, sponsorship_declined_email,
)
from services.subscription_service import (
    apply_subscription_activated, apply_subscription_terminated, expire_lapsed_subscription,
)

router = APIRouter(prefix="/supervisor", tags=["Supervisor"])
logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def _require_billing_settings(settings: Settings) -> None:
    missing = settings.missing_billing_settings
    if missing:
        raise AppError(
            f"Billing configuration incomplete. Missing environment variables: {', '.join(missing)}",
            status_code=500,
        )


def build_subscription_summary(user: User, sponsored_count: int, now: datetime) -> SubscriptionSummary:
    expires_at = user.subscription_expires_at
    is_trial = user.subscription_type == SubscriptionType.FREE_TRIAL

    trial_days_remaining: Optional[int] = None
    if is_trial and expires_at:
        trial_days_remaining = max(0, ceil((expires_at - now).total_seconds() / SECONDS_PER_DAY))

    return SubscriptionSummary(
        subscription_type=user.subscription_type,
        subscription_started_at=user.subscription_started_at,
        subscription_expires_at=expires_at,
        billing_subscription_status=user.billing_subscription_status,
        sponsored_count=sponsored_count,
        sponsor_limit=SUPERVISOR_SPONSOR_LIMIT,
        slots_remaining=max(0, SUPERVISOR_SPONSOR_LIMIT - sponsored_count),
        can_sponsor=can_sponsor_accounts(user),
        trial_days_remaining=trial_days_remaining,
        trial_expired=bool(is_trial and expires_at and expires_at < now),
        is_cancelled=user.subscription_type == SubscriptionType.CANCELLED,
    )


# ==========================================================
# ✅ Subscription summary (lapsed paid periods are cancelled here)
# ==========================================================
@router.get("/subscription", response_model=SubscriptionSummary)
def get_subscription(
    current_user: User = Depends(get_current_supervisor),
    session: Session = Depends(get_session),
):
    now = utcnow()
    if expire_lapsed_subscription(session, current_user, now):
        session.commit()
        session.refresh(current_user)

    return build_subscription_summary(current_user, count_sponsored_users(session, current_user.id), now)


# ==========================================================
# ✅ Start billing (GoCardless redirect flow)
# ==========================================================
@router.post("/subscription/manage", response_model=ManageSubscriptionResponse)
def start_subscription(
    current_user: User = Depends(get_current_supervisor),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    billing: GoCardlessClient = Depends(get_billing_client),
):
    if current_user.subscription_type == SubscriptionType.SUBSCRIBED and current_user.billing_subscription_id:
        raise InvalidInputError("Subscription already active. Cancel it before starting a new one.")

    _require_billing_settings(settings)

    session_token = build_session_token()
    first_name, _, family_name = (current_user.name or "").strip().partition(" ")
    flow = billing.create_redirect_flow(
        description="ProjectDesk supervisor subscription",
        session_token=session_token,
        success_redirect_url=settings.GOCARDLESS_SUCCESS_REDIRECT_URL,
        prefilled_customer={
            "given_name": first_name,
            "family_name": family_name.strip(),
            "email": current_user.email,
        },
        metadata={"userId": str(current_user.id)},
    )

    # Only one incomplete flow per supervisor
    stale = session.exec(
        select(BillingRedirectFlow).where(
            BillingRedirectFlow.user_id == current_user.id,
            BillingRedirectFlow.completed_at.is_(None),
        )
    ).all()
    for record in stale:
        session.delete(record)
    session.add(BillingRedirectFlow(user_id=current_user.id, flow_id=flow.id, session_token=session_token))
    session.commit()

    logger.info("💳 Redirect flow %s started for user %s", flow.id, current_user.id)
    return ManageSubscriptionResponse(redirect_url=flow.redirect_url or "", redirect_flow_id=flow.id)


# ==========================================================
# ✅ Complete billing after the hosted mandate page
# ==========================================================
@router.post("/subscription/complete")
def complete_subscription(
    data: CompleteSubscriptionRequest,
    current_user: User = Depends(get_current_supervisor),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
    billing: GoCardlessClient = Depends(get_billing_client),
):
    record = session.exec(
        select(BillingRedirectFlow).where(BillingRedirectFlow.flow_id == data.redirect_flow_id)
    ).first()
    if not record or record.user_id != current_user.id:
        raise NotFoundError("Redirect flow not found")
    if record.completed_at:
        raise InvalidInputError("Redirect flow already completed")

    _require_billing_settings(settings)

    flow = billing.complete_redirect_flow(record.flow_id, record.session_token)
    if not flow.mandate_id or not flow.customer_id:
        raise BillingProviderError("GoCardless response missing mandate or customer")

    subscription = billing.create_subscription(
        mandate_id=flow.mandate_id,
        amount=settings.GOCARDLESS_SUBSCRIPTION_AMOUNT,
        currency=settings.GOCARDLESS_SUBSCRIPTION_CURRENCY,
        name=settings.GOCARDLESS_SUBSCRIPTION_NAME,
        interval_unit=settings.GOCARDLESS_SUBSCRIPTION_INTERVAL_UNIT,
        interval=settings.GOCARDLESS_SUBSCRIPTION_INTERVAL,
        metadata={"userId": str(current_user.id)},
    )

    # Flow completion and the SUBSCRIBED transition commit together
    now = utcnow()
    record.completed_at = now
    current_user.billing_customer_id = flow.customer_id
    current_user.billing_mandate_id = flow.mandate_id
    current_user.billing_subscription_id = subscription.id
    session.add(record)
    apply_subscription_activated(session, current_user, now, subscription.status)
    session.commit()

    logger.info("✅ User %s subscribed (%s)", current_user.id, subscription.id)
    return {"ok": True, "subscription_id": subscription.id, "subscription_status": subscription.status}


# ==========================================================
# ✅ Cancel billing (provider first, then local transition)
# ==========================================================
@router.delete("/subscription/manage")
def cancel_subscription(
    current_user: User = Depends(get_current_supervisor),
    session: Session = Depends(get_session),
    billing: GoCardlessClient = Depends(get_billing_client),
):
    if not current_user.billing_subscription_id:
        raise InvalidInputError("No GoCardless subscription to cancel.")

    billing.cancel_subscription(current_user.billing_subscription_id)

    apply_subscription_terminated(session, current_user, utcnow(), "cancelled")
    session.commit()
    return {"ok": True}


# ==========================================================
# ✅ Sponsored users & pending requests
# ==========================================================
@router.get("/sponsored", response_model=SponsoredUsersRead)
def list_sponsored(
    current_user: User = Depends(get_current_supervisor),
    session: Session = Depends(get_session),
):
    sponsored = session.exec(
        select(User).where(User.sponsor_id == current_user.id).order_by(User.name, User.email)
    ).all()
    pending = session.exec(
        select(User)
        .where(
            User.supervisor_id == current_user.id,
            User.sponsor_id.is_(None),
            User.subscription_type == SubscriptionType.SPONSORED,
            User.role.in_(list(SPONSORABLE_ROLES)),
        )
        .order_by(User.created_at)
    ).all()

    return SponsoredUsersRead(
        sponsored=[UserRead.model_validate(u) for u in sponsored],
        pending_requests=[UserRead.model_validate(u) for u in pending],
        sponsored_count=len(sponsored),
        sponsor_limit=SUPERVISOR_SPONSOR_LIMIT,
    )


@router.post("/sponsored")
def sponsor_user(
    data: SponsorRequest,
    current_user: User = Depends(get_current_supervisor),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    if data.user_id is not None:
        target = session.get(User, data.user_id)
    else:
        target = session.exec(select(User).where(User.email == data.email.strip().lower())).first()
    if not target:
        raise NotFoundError("User not found")

    grant_sponsorships(session, current_user, [target])
    session.commit()
    session.refresh(target)

    subject, body = sponsorship_approved_email(target.name, current_user.role == UserRole.ADMIN)
    mailer.send(target.email, subject, body)

    return {"sponsored": UserRead.model_validate(target)}


@router.delete("/sponsored/{user_id}")
def remove_sponsored_user(
    user_id: int,
    current_user: User = Depends(get_current_supervisor),
    session: Session = Depends(get_session),
):
    target = session.get(User, user_id)
    if not target:
        raise NotFoundError("User not found")

    remove_sponsorship(session, current_user, target)
    session.commit()
    logger.info("👋 User %s no longer sponsored by %s", user_id, current_user.id)
    return {"ok": True}


@router.delete("/requests/{user_id}")
def decline_sponsorship_request(
    user_id: int,
    current_user: User = Depends(get_current_supervisor),
    session: Session = Depends(get_session),
    mailer: EmailService = Depends(get_email_service),
):
    target = session.get(User, user_id)
    if not target:
        raise NotFoundError("User not found")

    decline_request(session, current_user, target)
    session.commit()

    subject, body = sponsorship_declined_email(target.name)
    mailer.send(target.email, subject, body)
    return {"ok": True}
