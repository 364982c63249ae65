# user_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime

from models.models import UserRole, SubscriptionType


# ---------------------------
# Signup & Auth
# ---------------------------
class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8)
    account_type: UserRole = Field(default=UserRole.SUPERVISOR)
    # Students and collaborators name the supervisor who will sponsor them
    sponsor_email: Optional[EmailStr] = None


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class VerifyEmailRequest(BaseModel):
    token: str = Field(..., min_length=1)


# ---------------------------
# Read
# ---------------------------
class UserRead(BaseModel):
    id: int
    name: Optional[str] = None
    email: EmailStr
    role: UserRole
    email_verified_at: Optional[datetime] = None
    subscription_type: SubscriptionType
    subscription_started_at: Optional[datetime] = None
    subscription_expires_at: Optional[datetime] = None
    sponsor_id: Optional[int] = None
    supervisor_id: Optional[int] = None
    sponsor_subscription_inactive: bool = False
    billing_subscription_status: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead
    claims: Dict[str, Any]


# ---------------------------
# Admin
# ---------------------------
class AdminUserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[UserRole] = None


class SubscriptionOverride(BaseModel):
    subscription_type: SubscriptionType
    subscription_expires_at: Optional[datetime] = None
