"""
Farm membership operations.

Provides functions for:
- Registering an account together with the farm it owns
- Removing staff (the removed user falls back to a farm of their own)
- Changing a staff member's role
- Updating the farm profile
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.core.security import Principal
from app.database import atomic
from app.models.farm import Farm, FarmStaff, StaffRole
from app.models.invitation import FarmInvitation, InvitationStatus
from app.models.user import DEFAULT_USER_SETTINGS, PlanTier, SubscriptionStatus, User
from app.services.farm_roles import (
    Capability,
    can,
    may_grant,
    may_manage_member,
    parse_staff_role,
)
from app.services.identity_resolver import AccountView, resolve_identity
from app.utils.emails import validate_email_address

logger = logging.getLogger(__name__)

MAX_FARM_NAME_LENGTH = 255


@dataclass(frozen=True)
class RemovalResult:
    user_id: UUID
    fallback_farm_id: UUID
    fallback_farm_name: str
    created_fallback: bool


def _display_name_for(user: User) -> str:
    if user.display_name:
        return user.display_name
    return user.email.split("@", 1)[0]


def personal_farm_name(user: User) -> str:
    return settings.PERSONAL_FARM_NAME_TEMPLATE.format(name=_display_name_for(user))


def _clean_farm_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Farm name cannot be empty")
    if len(cleaned) > MAX_FARM_NAME_LENGTH:
        raise ValidationError(f"Farm name must be at most {MAX_FARM_NAME_LENGTH} characters")
    return cleaned


def _caller_view(db: Session, principal: Principal, capability: Capability, message: str) -> AccountView:
    view = resolve_identity(db, principal.user_id)
    if not can(view, capability):
        raise PermissionDeniedError(message)
    return view


def register_user(
    db: Session,
    principal: Principal,
    *,
    display_name: Optional[str] = None,
    farm_name: Optional[str] = None,
    plan: Union[str, PlanTier] = PlanTier.FREE,
    location: Optional[Dict[str, Any]] = None,
) -> User:
    """Create the account for ``principal`` and the farm it owns, in one transaction."""
    email = validate_email_address(principal.email)
    try:
        plan_tier = PlanTier(plan)
    except ValueError as exc:
        raise ValidationError("Plan must be one of free, pro or agribusiness") from exc

    if db.query(User.id).filter(User.id == principal.user_id).first() is not None:
        raise ConflictError("This account is already registered")
    if db.query(User.id).filter(User.email == email).first() is not None:
        raise ConflictError(f"{email} is already registered")

    status = (
        SubscriptionStatus.ACTIVE.value
        if plan_tier == PlanTier.FREE
        else SubscriptionStatus.PENDING_PAYMENT.value
    )
    user = User(
        id=principal.user_id,
        email=email,
        display_name=(display_name or "").strip() or None,
        is_farm_owner=True,
        role_on_current_farm=plan_tier.value,
        selected_plan=plan_tier,
        subscription_status=status,
        settings=dict(DEFAULT_USER_SETTINGS),
    )

    try:
        with atomic(db):
            db.add(user)
            db.flush()
            name = _clean_farm_name(farm_name) if farm_name is not None else personal_farm_name(user)
            farm = Farm(name=name, owner_id=user.id, location=location)
            db.add(farm)
            db.flush()
            user.farm_id = farm.id

            # Invitations sent before the account existed now resolve to it
            db.query(FarmInvitation).filter(
                FarmInvitation.invited_email == email,
                FarmInvitation.status == InvitationStatus.PENDING,
                FarmInvitation.invited_user_id.is_(None),
            ).update({FarmInvitation.invited_user_id: user.id}, synchronize_session=False)
    except IntegrityError as exc:
        raise ConflictError(f"{email} is already registered") from exc

    db.refresh(user)
    logger.info("Registered user %s with farm %s on plan %s", user.id, user.farm_id, plan_tier.value)
    return user


def remove_staff(
    db: Session,
    principal: Principal,
    farm_id: UUID,
    staff_user_id: UUID,
) -> RemovalResult:
    """Remove a staff member and move them to a farm they own."""
    view = _caller_view(db, principal, Capability.REMOVE_STAFF, "You do not have permission to remove staff")
    if view.farm_id != farm_id:
        raise PermissionDeniedError("You can only manage staff of your own farm")

    farm = db.query(Farm).filter(Farm.id == farm_id).first()
    if farm is None:
        raise NotFoundError("Farm not found")
    if farm.owner_id == staff_user_id:
        raise PermissionDeniedError("The farm owner cannot be removed")

    row = (
        db.query(FarmStaff)
        .filter(FarmStaff.farm_id == farm_id, FarmStaff.user_id == staff_user_id)
        .first()
    )
    if row is None:
        raise NotFoundError("Staff member not found on this farm")
    if not may_manage_member(view.role, row.role):
        raise PermissionDeniedError("Admins cannot remove other admins")

    with atomic(db):
        db.delete(row)
        db.flush()

        user = db.query(User).filter(User.id == staff_user_id).with_for_update().first()
        if user is None:
            raise NotFoundError("Staff account not found")

        fallback = (
            db.query(Farm)
            .filter(Farm.owner_id == user.id)
            .order_by(Farm.created_at.desc())
            .first()
        )
        created = fallback is None
        if created:
            fallback = Farm(name=personal_farm_name(user), owner_id=user.id)
            db.add(fallback)
            db.flush()

        user.farm_id = fallback.id
        user.is_farm_owner = True
        user.role_on_current_farm = user.selected_plan.value
        result = RemovalResult(user.id, fallback.id, fallback.name, created)

    logger.info(
        "User %s removed from farm %s by %s; now owner of farm %s",
        staff_user_id,
        farm_id,
        principal.user_id,
        result.fallback_farm_id,
    )
    return result


def update_staff_role(
    db: Session,
    principal: Principal,
    staff_user_id: UUID,
    role: Union[str, StaffRole],
) -> FarmStaff:
    view = _caller_view(
        db, principal, Capability.CHANGE_STAFF_ROLE, "You do not have permission to change staff roles"
    )
    new_role = parse_staff_role(role)
    if new_role is None:
        raise ValidationError("Role must be one of admin, editor or viewer", details={"role": str(role)})

    farm = db.query(Farm).filter(Farm.id == view.farm_id).first()
    if farm is None:
        raise NotFoundError("Farm not found")
    if farm.owner_id == staff_user_id:
        raise PermissionDeniedError("The farm owner's role cannot be changed")

    row = (
        db.query(FarmStaff)
        .filter(FarmStaff.farm_id == farm.id, FarmStaff.user_id == staff_user_id)
        .first()
    )
    if row is None:
        raise NotFoundError("Staff member not found on this farm")
    if not may_manage_member(view.role, row.role):
        raise PermissionDeniedError("Admins cannot change another admin's role")
    if not may_grant(view.role, new_role):
        raise PermissionDeniedError("Admins cannot promote staff to admin")

    if row.role == new_role:
        return row

    previous = row.role
    with atomic(db):
        row.role = new_role
        user = db.query(User).filter(User.id == staff_user_id).first()
        if user is not None and user.farm_id == farm.id:
            user.role_on_current_farm = new_role.value

    db.refresh(row)
    logger.info(
        "Staff %s on farm %s changed from %s to %s by %s",
        staff_user_id,
        farm.id,
        previous.value,
        new_role.value,
        principal.user_id,
    )
    return row


def update_farm_profile(
    db: Session,
    principal: Principal,
    *,
    name: Optional[str] = None,
    location: Optional[Dict[str, Any]] = None,
) -> Farm:
    """Owner-only update of farm name and location."""
    view = _caller_view(
        db, principal, Capability.MANAGE_FARM_PROFILE, "Only the farm owner can edit the farm profile"
    )
    farm = db.query(Farm).filter(Farm.id == view.farm_id).first()
    if farm is None:
        raise NotFoundError("Farm not found")

    with atomic(db):
        if name is not None:
            farm.name = _clean_farm_name(name)
        if location is not None:
            farm.location = dict(location)

    db.refresh(farm)
    logger.info("Farm %s profile updated by %s", farm.id, principal.user_id)
    return farm
