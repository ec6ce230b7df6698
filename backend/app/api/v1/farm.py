from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from app.api.deps import get_current_principal
from app.api.utils.farm_access import require_capability
from app.core.config import settings
from app.core.rate_limiter import limiter, principal_or_address
from app.core.security import Principal
from app.database import get_db
from app.schemas.account import (
    FarmResponse,
    FarmUpdateRequest,
    FarmUpdateResponse,
    StaffRemovalResponse,
    StaffRoleUpdateRequest,
    StaffRoleUpdateResponse,
)
from app.schemas.invitation import InvitationCreate, InvitationCreateResponse, InvitationResponse
from app.services import email_service, invitation_service, membership_service
from app.services.farm_roles import Capability
from app.services.identity_resolver import AccountView

router = APIRouter()


@router.patch("/farm", response_model=FarmUpdateResponse)
def update_farm(
    payload: FarmUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Owner-only edit of farm name and location."""
    farm = membership_service.update_farm_profile(
        db,
        principal,
        name=payload.name,
        location=payload.location.model_dump(exclude_none=True) if payload.location else None,
    )
    return FarmUpdateResponse(
        success=True,
        message="Farm profile updated",
        farm=FarmResponse.model_validate(farm),
    )


@router.post("/farm/invitations", response_model=InvitationCreateResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_INVITE, key_func=principal_or_address)
def create_invitation(
    request: Request,
    payload: InvitationCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invitation = invitation_service.invite(db, principal, payload.email, payload.role)
    sent = email_service.send_staff_invitation_email(
        invitation.invited_email,
        invitation.token,
        farm_name=invitation.farm_name,
        role=invitation.invited_role.value,
        expires_at=invitation.token_expires_at,
        inviter_name=invitation.inviter_name,
    )
    if sent:
        message = f"Invitation emailed to {invitation.invited_email}"
    else:
        message = (
            f"Invitation created for {invitation.invited_email}, but the email could not be sent. "
            "Share the invitation link with them directly."
        )
    return InvitationCreateResponse(
        success=True,
        message=message,
        invitation=InvitationResponse.model_validate(invitation),
        email_sent=sent,
        invitation_link=None if sent else email_service.invitation_link(invitation.token),
    )


@router.get("/farm/invitations", response_model=List[InvitationResponse])
def list_farm_invitations(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return invitation_service.list_farm_invitations(db, principal)


@router.delete("/farm/staff/{user_id}", response_model=StaffRemovalResponse)
def remove_staff_member(
    user_id: UUID,
    account: AccountView = Depends(require_capability(Capability.REMOVE_STAFF)),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    result = membership_service.remove_staff(db, principal, account.farm_id, user_id)
    return StaffRemovalResponse(
        success=True,
        message=f"Staff member removed; they now manage {result.fallback_farm_name}",
        user_id=result.user_id,
        fallback_farm_id=result.fallback_farm_id,
        fallback_farm_name=result.fallback_farm_name,
    )


@router.patch("/farm/staff/{user_id}", response_model=StaffRoleUpdateResponse)
def update_staff_member_role(
    user_id: UUID,
    payload: StaffRoleUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    row = membership_service.update_staff_role(db, principal, user_id, payload.role)
    return StaffRoleUpdateResponse(
        success=True,
        message=f"Role updated to {row.role.value}",
        user_id=row.user_id,
        role=row.role,
    )
