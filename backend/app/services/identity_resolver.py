"""Resolve a user id into the account view every authorization check uses.

The view is a read projection: the caller's farm, their role on it (derived
from the farm's owner and staff rows, never from the cached user field) and,
for farm managers, the expanded staff list.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import IntegrityViolation, NotFoundError, ResolutionError
from app.models.farm import Farm, FarmStaff, StaffRole
from app.models.user import PlanTier, User
from app.services.farm_roles import Owner, Role, Staff, is_admin

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StaffMemberView:
    user_id: UUID
    role: StaffRole
    display_name: Optional[str]
    email: Optional[str]


@dataclass(frozen=True)
class AccountView:
    user_id: UUID
    email: str
    display_name: Optional[str]
    farm_id: Optional[UUID]
    farm_name: Optional[str]
    farm_location: Optional[Dict[str, Any]]
    is_farm_owner: bool
    role: Optional[Role]
    selected_plan: PlanTier
    subscription_status: str
    staff: List[StaffMemberView] = field(default_factory=list)
    settings: Dict[str, Any] = field(default_factory=dict)

    @property
    def role_value(self) -> Optional[str]:
        return self.role.value if self.role is not None else None


def _expand_staff(db: Session, farm: Farm) -> List[StaffMemberView]:
    rows = (
        db.query(FarmStaff, User)
        .outerjoin(User, User.id == FarmStaff.user_id)
        .filter(FarmStaff.farm_id == farm.id)
        .order_by(FarmStaff.created_at)
        .all()
    )
    members = []
    for staff_row, member in rows:
        if member is None:
            logger.warning(
                "Staff row on farm %s references missing user %s", farm.id, staff_row.user_id
            )
        members.append(
            StaffMemberView(
                user_id=staff_row.user_id,
                role=staff_row.role,
                display_name=member.display_name if member else None,
                email=member.email if member else None,
            )
        )
    return members


def _farmless_view(user: User) -> AccountView:
    return AccountView(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
        farm_id=None,
        farm_name=None,
        farm_location=None,
        is_farm_owner=False,
        role=None,
        selected_plan=user.selected_plan,
        subscription_status=user.subscription_status,
        settings=dict(user.settings or {}),
    )


def resolve_identity(db: Session, user_id: UUID) -> AccountView:
    """Build a fresh ``AccountView`` for ``user_id``.

    Raises ``NotFoundError`` when the user row is absent and ``ResolutionError``
    when the store cannot be read. Dangling farm references degrade to a
    farm-less view and are only logged.
    """
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None:
            raise NotFoundError("Account not found", details={"user_id": str(user_id)})

        if user.farm_id is None:
            return _farmless_view(user)

        farm = db.query(Farm).filter(Farm.id == user.farm_id).first()
        if farm is None:
            violation = IntegrityViolation(
                "User references a farm that does not exist",
                details={"user_id": str(user.id), "farm_id": str(user.farm_id)},
            )
            logger.warning("%s: %s", violation.message, violation.details)
            return _farmless_view(user)

        role: Optional[Role]
        staff: List[StaffMemberView] = []
        if farm.owner_id == user.id:
            role = Owner(user.selected_plan)
            staff = _expand_staff(db, farm)
        else:
            membership = (
                db.query(FarmStaff)
                .filter(FarmStaff.farm_id == farm.id, FarmStaff.user_id == user.id)
                .first()
            )
            if membership is None:
                logger.warning(
                    "User %s points at farm %s but is not listed as staff", user.id, farm.id
                )
                role = None
            else:
                role = Staff(membership.role)
                if is_admin(role):
                    staff = _expand_staff(db, farm)
    except SQLAlchemyError as exc:
        logger.exception("Failed to resolve identity for user %s", user_id)
        raise ResolutionError("Could not resolve account") from exc

    return AccountView(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
        farm_id=farm.id,
        farm_name=farm.name,
        farm_location=farm.location,
        is_farm_owner=isinstance(role, Owner),
        role=role,
        selected_plan=user.selected_plan,
        subscription_status=user.subscription_status,
        staff=staff,
        settings=dict(user.settings or {}),
    )
