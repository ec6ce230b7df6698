from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from app.api.deps import get_current_principal
from app.core.security import Principal
from app.database import get_db
from app.schemas.invitation import (
    AcceptResponse,
    AcceptTokenRequest,
    InvitationActionResponse,
    InvitationResponse,
)
from app.services import invitation_service
from app.services.invitation_service import AcceptResult

router = APIRouter()


def _accept_response(result: AcceptResult) -> AcceptResponse:
    if result.already_member:
        message = "You are already a member of this farm"
    else:
        message = f"You joined {result.farm_name or 'the farm'} as {result.new_role}"
    return AcceptResponse(
        success=True,
        message=message,
        new_farm_id=result.new_farm_id,
        new_role=result.new_role,
        farm_name=result.farm_name,
    )


@router.get("/invitations/mine", response_model=List[InvitationResponse])
def list_my_invitations(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    return invitation_service.list_my_invitations(db, principal)


@router.post("/invitations/accept-token", response_model=AcceptResponse)
def accept_invitation_by_token(
    payload: AcceptTokenRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Accept through the link token sent by email."""
    result = invitation_service.accept_by_token(db, principal, payload.token)
    return _accept_response(result)


@router.post("/invitations/{invitation_id}/accept", response_model=AcceptResponse)
def accept_invitation(
    invitation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    result = invitation_service.accept(db, principal, invitation_id)
    return _accept_response(result)


@router.post("/invitations/{invitation_id}/decline", response_model=InvitationActionResponse)
def decline_invitation(
    invitation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invitation = invitation_service.decline(db, principal, invitation_id)
    return InvitationActionResponse(
        success=True,
        message="Invitation declined",
        invitation_id=invitation.id,
        status=invitation.status,
    )


@router.post("/invitations/{invitation_id}/revoke", response_model=InvitationActionResponse)
def revoke_invitation(
    invitation_id: UUID,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    invitation = invitation_service.revoke(db, principal, invitation_id)
    return InvitationActionResponse(
        success=True,
        message=f"Invitation to {invitation.invited_email} revoked",
        invitation_id=invitation.id,
        status=invitation.status,
    )
