from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_current_account, get_current_principal
from app.core.security import Principal
from app.database import get_db
from app.schemas.account import AccountResponse, RegisterRequest
from app.services import membership_service
from app.services.identity_resolver import AccountView, resolve_identity

router = APIRouter()


@router.post("/account/register", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def register_account(
    payload: RegisterRequest,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    """Create the caller's account and the farm they own."""
    user = membership_service.register_user(
        db,
        principal,
        display_name=payload.display_name,
        farm_name=payload.farm_name,
        plan=payload.plan,
        location=payload.location.model_dump(exclude_none=True) if payload.location else None,
    )
    return AccountResponse.from_view(resolve_identity(db, user.id))


@router.get("/account/me", response_model=AccountResponse)
def read_account(account: AccountView = Depends(get_current_account)):
    return AccountResponse.from_view(account)
