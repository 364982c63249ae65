# profile_schema.py
from pydantic import BaseModel
from typing import Optional

from schemas.user_schema import UserRead


class LockoutRead(BaseModel):
    locked: bool = False
    reason: Optional[str] = None
    message: Optional[str] = None


class ProfileRead(UserRead):
    sponsor_name: Optional[str] = None
    sponsor_email: Optional[str] = None
    lockout: LockoutRead
