# core/payment_utils.py
import hashlib
import hmac
import re
import secrets
from typing import Optional, Union

from fastapi import Depends, HTTPException

from core.security import get_current_user
from models.models import User, UserRole
from services.access_controller import evaluate_lockout

SIGNATURE_PATTERN = re.compile(r"sha256=([0-9a-fA-F]+)", re.IGNORECASE)


def get_active_user(current_user: User = Depends(get_current_user)) -> User:
    """
    Dependency for feature routes: blocks cancelled supervisors and users
    whose sponsor's billing lapsed. Subscription and profile routes stay
    reachable so the account can be remediated.
    """
    lockout = evaluate_lockout(current_user)
    if lockout.locked:
        raise HTTPException(status_code=403, detail=lockout.message)
    return current_user


def get_active_supervisor(current_user: User = Depends(get_active_user)) -> User:
    """Active Supervisor or Admin."""
    if current_user.role not in (UserRole.SUPERVISOR, UserRole.ADMIN):
        raise HTTPException(status_code=403, detail="Access denied")
    return current_user


def compute_webhook_signature(payload: Union[str, bytes], secret: str) -> str:
    """Hex HMAC-SHA256 of the raw webhook body."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload: Union[str, bytes], signature_header: Optional[str], secret: str) -> bool:
    """
    Check a `sha256=<hex>` signature header against the raw body.
    Comparison is constant-time; anything malformed is simply invalid.
    """
    if not signature_header or not secret:
        return False

    match = SIGNATURE_PATTERN.search(signature_header)
    if not match:
        return False

    expected = compute_webhook_signature(payload, secret)
    return hmac.compare_digest(match.group(1).lower(), expected)


def build_session_token() -> str:
    """Random token tying a redirect flow to the supervisor who started it."""
    return secrets.token_hex(32)
