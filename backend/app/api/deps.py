from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from app.database import get_db
from app.core.security import Principal, verify_token
from app.services.identity_resolver import AccountView, resolve_identity

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    """Authenticated caller from the bearer JWT (``sub``, ``email``, ``email_verified``)."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    principal = verify_token(credentials.credentials)
    if principal is None:
        raise credentials_exception
    return principal


def get_current_account(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> AccountView:
    """Fresh identity resolution for the caller; never cached across requests."""
    return resolve_identity(db, principal.user_id)
