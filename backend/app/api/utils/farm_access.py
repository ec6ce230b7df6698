"""Shared helpers for farm access control."""

from __future__ import annotations

from typing import Callable

from fastapi import Depends
from sqlalchemy.orm import Session

from app.api.deps import get_current_principal
from app.core.errors import PermissionDeniedError
from app.core.security import Principal
from app.database import get_db
from app.services.farm_roles import Capability, can
from app.services.identity_resolver import AccountView, resolve_identity


def ensure_capability(view: AccountView, capability: Capability) -> AccountView:
    if not can(view, capability):
        raise PermissionDeniedError(
            "You do not have permission to perform this action",
            details={"capability": capability.value},
        )
    return view


def require_capability(capability: Capability) -> Callable[..., AccountView]:
    """Dependency factory: re-resolve the caller and demand ``capability`` on their farm."""

    def dependency(
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
    ) -> AccountView:
        return ensure_capability(resolve_identity(db, principal.user_id), capability)

    return dependency
