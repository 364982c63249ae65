# billing_schema.py
from pydantic import BaseModel, EmailStr, Field, model_validator
from typing import Optional, List, Dict
from datetime import datetime

from models.models import SubscriptionType
from schemas.user_schema import UserRead


# ---------------------------
# Supervisor subscription
# ---------------------------
class SubscriptionSummary(BaseModel):
    subscription_type: SubscriptionType
    subscription_started_at: Optional[datetime] = None
    subscription_expires_at: Optional[datetime] = None
    billing_subscription_status: Optional[str] = None
    sponsored_count: int
    sponsor_limit: int
    slots_remaining: int
    can_sponsor: bool
    trial_days_remaining: Optional[int] = None
    trial_expired: bool = False
    is_cancelled: bool = False


class ManageSubscriptionResponse(BaseModel):
    redirect_url: str
    redirect_flow_id: str


class CompleteSubscriptionRequest(BaseModel):
    redirect_flow_id: str = Field(..., min_length=1)


# ---------------------------
# Sponsorship
# ---------------------------
class SponsorRequest(BaseModel):
    user_id: Optional[int] = None
    email: Optional[EmailStr] = None

    @model_validator(mode="after")
    def require_target(self):
        if self.user_id is None and self.email is None:
            raise ValueError("Provide user_id or email")
        return self


class SponsoredUsersRead(BaseModel):
    sponsored: List[UserRead]
    pending_requests: List[UserRead]
    sponsored_count: int
    sponsor_limit: int


# ---------------------------
# Admin metrics
# ---------------------------
class SponsorAlert(BaseModel):
    user_id: int
    email: str
    sponsor_id: Optional[int] = None
    sponsor_email: Optional[str] = None


class SubscriptionMetrics(BaseModel):
    counts_by_type: Dict[str, int]
    active_subscribers: int
    trials_ending_soon: int
    cancelled_supervisors: int
    sponsor_alerts: List[SponsorAlert]
    provider_status_counts: Dict[str, int]
