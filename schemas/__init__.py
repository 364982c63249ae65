
from .billing_schema import (
    SubscriptionSummary, ManageSubscriptionResponse, CompleteSubscriptionRequest,
    SponsorRequest, SponsoredUsersRead, SponsorAlert, SubscriptionMetrics,
)
from .profile_schema import LockoutRead, ProfileRead
from .project_schema import MemberInput, MemberRead, ProjectCreate, ProjectRead, ProjectStatusRead, ProjectUpdate
from .task_schema import TaskCreate, TaskRead, TaskUpdate
from .user_schema import (
    UserCreate, UserLogin, UserRead, VerifyEmailRequest, TokenResponse,
    AdminUserUpdate, SubscriptionOverride,
)

__all__ = [
    # Billing
    "SubscriptionSummary", "ManageSubscriptionResponse", "CompleteSubscriptionRequest",
    "SponsorRequest", "SponsoredUsersRead", "SponsorAlert", "SubscriptionMetrics",

    # Profile
    "LockoutRead", "ProfileRead",

    # Project
    "MemberInput", "MemberRead", "ProjectCreate", "ProjectRead", "ProjectStatusRead", "ProjectUpdate",

    # Task
    "TaskCreate", "TaskRead", "TaskUpdate",

    # User
    "UserCreate", "UserLogin", "UserRead", "VerifyEmailRequest", "TokenResponse",
    "AdminUserUpdate", "SubscriptionOverride",
]
