# core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlmodel import Session

from core.config import Settings, get_app_settings
from core.database import get_session
from models.models import User, UserRole


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# ========================================
# 🔐 Password Hashing (Argon2)
# ========================================
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash password using Argon2."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """Verify password using Argon2. Accounts without a stored hash never verify."""
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        return False


# ========================================
# 🔑 Token Helpers
# ========================================
def create_access_token(
    data: Dict[str, Any],
    settings: Settings,
    expires_delta: Optional[timedelta] = None,
) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str, settings: Settings) -> dict:
    """Decode JWT and return payload."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def build_session_claims(user: User) -> Dict[str, Any]:
    """Claims carried by an issued session; refreshed only at issuance."""
    return {
        "sub": user.email,
        "user_id": user.id,
        "name": user.display_name,
        "role": user.role.value,
        "subscription_type": user.subscription_type.value,
        "subscription_started_at": _iso(user.subscription_started_at),
        "subscription_expires_at": _iso(user.subscription_expires_at),
        "sponsor_id": user.sponsor_id,
        "sponsor_subscription_inactive": bool(user.sponsor_subscription_inactive),
    }


def create_token_for_user(user: User, settings: Settings) -> str:
    return create_access_token(build_session_claims(user), settings)


# ========================================
# 📧 Verification Tokens
# ========================================
def generate_verification_token() -> str:
    """Generate secure random token for email verification links."""
    return secrets.token_hex(24)


# ========================================
# 👤 Authentication & Role Checks
# ========================================
def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> User:
    """Extract user from token and load full record from DB."""
    payload = decode_token(token, settings)
    user_id = payload.get("user_id")

    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    return user


def get_current_supervisor(current_user: User = Depends(get_current_user)) -> User:
    """Require Supervisor or Admin."""
    if current_user.role not in (UserRole.SUPERVISOR, UserRole.ADMIN):
        raise HTTPException(status_code=403, detail="Access denied")
    return current_user


def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Only Admin."""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Forbidden")
    return current_user
