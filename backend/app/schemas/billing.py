from pydantic import BaseModel
from typing import Optional
from uuid import UUID

from app.models.user import PlanTier


class PlanChangeResponse(BaseModel):
    success: bool
    message: str
    user_id: UUID
    selected_plan: PlanTier
    subscription_status: str
    role_on_current_farm: Optional[str] = None


class WebhookAck(BaseModel):
    received: bool = True
    handled: bool = False
