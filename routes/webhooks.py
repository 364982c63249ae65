# routes/webhooks.py
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from core.config import Settings, get_app_settings
from core.database import get_session
from core.payment_utils import verify_webhook_signature
from services.subscription_service import process_webhook_events

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])
logger = logging.getLogger(__name__)


@router.post("/gocardless")
async def gocardless_webhook(
    request: Request,
    session: Session = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
):
    """Handle GoCardless subscription and mandate events."""
    signature = request.headers.get("webhook-signature")
    if not signature:
        logger.error("❌ Missing Webhook-Signature header")
        return JSONResponse(status_code=400, content={"detail": "Missing webhook signature"})

    webhook_secret = settings.GOCARDLESS_WEBHOOK_SECRET
    if not webhook_secret:
        logger.error("❌ GOCARDLESS_WEBHOOK_SECRET not configured")
        return JSONResponse(status_code=500, content={"detail": "Webhook secret not configured"})

    payload = await request.body()

    if not verify_webhook_signature(payload, signature, webhook_secret):
        logger.error("❌ Invalid GoCardless webhook signature")
        return JSONResponse(status_code=400, content={"detail": "Invalid signature"})

    try:
        events = json.loads(payload)
    except ValueError as e:
        logger.error("❌ Failed to parse GoCardless webhook payload: %s", e)
        return JSONResponse(status_code=400, content={"detail": "Invalid payload"})

    try:
        applied = process_webhook_events(session, events)
    except Exception:
        return JSONResponse(status_code=500, content={"detail": "Error processing webhook"})

    return {"status": "success", "applied": applied}
