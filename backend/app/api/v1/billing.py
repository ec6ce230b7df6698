import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_principal
from app.core.config import settings
from app.core.security import Principal, verify_signature
from app.database import get_db
from app.schemas.billing import PlanChangeResponse, WebhookAck
from app.services.plan_service import PlanService

logger = logging.getLogger(__name__)

router = APIRouter()

SIGNATURE_HEADER = "X-Billing-Signature"


@router.post("/billing/webhook", response_model=WebhookAck)
async def billing_webhook(request: Request, db: Session = Depends(get_db)):
    """Plan-change events from the billing provider, HMAC-SHA256 signed."""
    raw_body = await request.body()

    secret = settings.BILLING_WEBHOOK_SECRET
    signature = request.headers.get(SIGNATURE_HEADER)
    if secret:
        if not verify_signature(secret, raw_body, signature):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid webhook signature")
    else:
        logger.warning("Billing webhook secret not configured; accepting unsigned payload")

    try:
        event = json.loads(raw_body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid event payload")

    user = PlanService.handle_billing_event(db, event)
    return WebhookAck(received=True, handled=user is not None)


@router.post("/billing/downgrade", response_model=PlanChangeResponse)
def downgrade_plan(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    user = PlanService.downgrade_to_free(db, principal)
    return PlanChangeResponse(
        success=True,
        message="Your plan has been changed to free",
        user_id=user.id,
        selected_plan=user.selected_plan,
        subscription_status=user.subscription_status,
        role_on_current_farm=user.role_on_current_farm,
    )
