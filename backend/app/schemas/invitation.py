"""
Pydantic schemas for farm staff invitations.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.models.farm import StaffRole
from app.models.invitation import InvitationStatus


class InvitationCreate(BaseModel):
    """Invite someone (registered or not) to the caller's farm."""
    email: EmailStr
    # Validated by the service so owner/unknown roles get a domain error
    role: str = StaffRole.VIEWER.value


class InvitationResponse(BaseModel):
    id: UUID
    inviter_farm_id: UUID
    farm_name: Optional[str] = None
    inviter_user_id: UUID
    inviter_name: Optional[str] = None
    invited_email: str
    invited_user_id: Optional[UUID] = None
    invited_role: StaffRole
    status: InvitationStatus
    token_expires_at: datetime
    created_at: datetime
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvitationCreateResponse(BaseModel):
    success: bool
    message: str
    invitation: InvitationResponse
    email_sent: bool
    # Only returned when the email could not be delivered, so the inviter can pass it on
    invitation_link: Optional[str] = None


class InvitationActionResponse(BaseModel):
    """Result of decline or revoke."""
    success: bool
    message: str
    invitation_id: UUID
    status: InvitationStatus


class AcceptTokenRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)


class AcceptResponse(BaseModel):
    success: bool
    message: str
    new_farm_id: UUID
    new_role: str
    farm_name: Optional[str] = None
