# ================================================================
# services/subscription_service.py - supervisor billing transitions
# and GoCardless webhook processing
# ================================================================
from datetime import datetime
from typing import Any, Dict, Optional
import logging

from sqlmodel import Session, select

from core.database import utcnow
from models.models import SubscriptionType, User

logger = logging.getLogger(__name__)

SUBSCRIPTION_TERMINATION_ACTIONS = frozenset({"cancelled", "expired", "finished", "failed"})
SUBSCRIPTION_ACTIVE_ACTIONS = frozenset({"created", "customer_approval_granted", "active"})
MANDATE_TERMINATION_ACTIONS = frozenset({"cancelled", "expired", "failed"})


def mark_sponsored_users_inactive(session: Session, sponsor_id: int, inactive: bool) -> int:
    """Flag (or clear) the sponsor-inactive lockout for everyone this user sponsors."""
    sponsored = session.exec(select(User).where(User.sponsor_id == sponsor_id)).all()
    for user in sponsored:
        user.sponsor_subscription_inactive = inactive
        session.add(user)
    return len(sponsored)


# ============================================================
# ✅ Transitions (caller commits)
# ============================================================
def apply_subscription_activated(
    session: Session,
    user: User,
    now: Optional[datetime] = None,
    provider_status: Optional[str] = None,
) -> None:
    now = now or utcnow()
    if user.subscription_type != SubscriptionType.SUBSCRIBED or user.subscription_started_at is None:
        user.subscription_started_at = now
    user.subscription_type = SubscriptionType.SUBSCRIBED
    user.subscription_expires_at = None
    if provider_status:
        user.billing_subscription_status = provider_status
    session.add(user)
    mark_sponsored_users_inactive(session, user.id, False)
    logger.info("✅ User %s subscription active (%s)", user.id, provider_status)


def apply_subscription_terminated(
    session: Session,
    user: User,
    now: Optional[datetime] = None,
    provider_status: Optional[str] = None,
) -> None:
    now = now or utcnow()
    user.subscription_type = SubscriptionType.CANCELLED
    user.subscription_expires_at = now
    if provider_status:
        user.billing_subscription_status = provider_status
    session.add(user)
    flagged = mark_sponsored_users_inactive(session, user.id, True)
    logger.info("🛑 User %s subscription cancelled (%s); %s sponsored users flagged", user.id, provider_status, flagged)


def apply_mandate_terminated(
    session: Session,
    user: User,
    now: Optional[datetime] = None,
    provider_status: Optional[str] = None,
) -> None:
    user.billing_mandate_id = None
    apply_subscription_terminated(session, user, now, provider_status)


def expire_lapsed_subscription(session: Session, user: User, now: Optional[datetime] = None) -> bool:
    """Cancel a SUBSCRIBED record whose paid period has already run out."""
    now = now or utcnow()
    if (
        user.subscription_type == SubscriptionType.SUBSCRIBED
        and user.subscription_expires_at is not None
        and user.subscription_expires_at < now
    ):
        apply_subscription_terminated(session, user, now, user.billing_subscription_status)
        return True
    return False


# ============================================================
# ✅ Webhook events
# ============================================================
def _handle_subscription_event(session: Session, subscription_id: str, action: str, now: datetime) -> bool:
    user = session.exec(select(User).where(User.billing_subscription_id == subscription_id)).first()
    if not user:
        logger.info("ℹ️ No user for subscription %s, ignoring '%s'", subscription_id, action)
        return False

    if action in SUBSCRIPTION_TERMINATION_ACTIONS:
        apply_subscription_terminated(session, user, now, action)
    elif action in SUBSCRIPTION_ACTIVE_ACTIONS:
        apply_subscription_activated(session, user, now, action)
    else:
        user.billing_subscription_status = action
        session.add(user)
    return True


def _handle_mandate_event(session: Session, mandate_id: str, action: str, now: datetime) -> bool:
    if action not in MANDATE_TERMINATION_ACTIONS:
        return False

    users = session.exec(select(User).where(User.billing_mandate_id == mandate_id)).all()
    for user in users:
        apply_mandate_terminated(session, user, now, action)
    return bool(users)


def process_webhook_events(session: Session, payload: Dict[str, Any], now: Optional[datetime] = None) -> int:
    """
    Apply every event in a verified webhook body and commit once.
    Returns the number of events that changed a user record. Re-delivering
    the same events re-applies the same field writes.
    """
    now = now or utcnow()
    events = payload.get("events") if isinstance(payload, dict) else None
    if not isinstance(events, list):
        return 0

    applied = 0
    try:
        for event in events:
            if not isinstance(event, dict):
                continue
            resource_type = event.get("resource_type")
            action = str(event.get("action") or "").strip().lower()
            links = event.get("links")
            if not isinstance(links, dict):
                continue
            subscription_id = links.get("subscription")
            mandate_id = links.get("mandate")

            if resource_type == "subscriptions" and isinstance(subscription_id, str) and subscription_id:
                applied += _handle_subscription_event(session, subscription_id, action, now)
            elif resource_type == "mandates" and isinstance(mandate_id, str) and mandate_id:
                applied += _handle_mandate_event(session, mandate_id, action, now)

        session.commit()
    except Exception:
        session.rollback()
        logger.exception("❌ Error processing GoCardless webhook")
        raise

    logger.info("📬 Webhook processed: %s events, %s applied", len(events), applied)
    return applied
