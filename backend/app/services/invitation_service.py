"""
Farm staff invitation lifecycle.

Invitations start ``pending`` and leave it exactly once: accepted, declined,
revoked, expired, or ``error_farm_not_found`` when the inviting farm vanished.
Every transition is a conditional ``UPDATE ... WHERE status = 'pending'`` so
two racing callers cannot both win.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Union
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    ConflictError,
    ExpiredError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from app.core.security import Principal
from app.database import atomic
from app.models.farm import Farm, FarmStaff, StaffRole
from app.models.invitation import FarmInvitation, InvitationStatus
from app.models.user import User
from app.services.farm_roles import Capability, can, may_grant, parse_staff_role
from app.services.identity_resolver import AccountView, resolve_identity
from app.utils.clock import has_passed, utcnow
from app.utils.emails import normalize_email, validate_email_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AcceptResult:
    new_farm_id: UUID
    new_role: str
    farm_name: Optional[str] = None
    already_member: bool = False


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_invitation_or_404(db: Session, invitation_id: UUID) -> FarmInvitation:
    invitation = db.query(FarmInvitation).filter(FarmInvitation.id == invitation_id).first()
    if invitation is None:
        raise NotFoundError("Invitation not found", details={"invitation_id": str(invitation_id)})
    return invitation


def _find_pending(db: Session, farm_id: UUID, email: str) -> Optional[FarmInvitation]:
    return (
        db.query(FarmInvitation)
        .filter(
            FarmInvitation.inviter_farm_id == farm_id,
            FarmInvitation.invited_email == email,
            FarmInvitation.status == InvitationStatus.PENDING,
        )
        .first()
    )


def _is_farm_member(db: Session, farm_id: UUID, user_id: UUID) -> bool:
    owns = db.query(Farm.id).filter(Farm.id == farm_id, Farm.owner_id == user_id).first()
    if owns is not None:
        return True
    listed = (
        db.query(FarmStaff.id)
        .filter(FarmStaff.farm_id == farm_id, FarmStaff.user_id == user_id)
        .first()
    )
    return listed is not None


def is_expired(invitation: FarmInvitation, now: Optional[datetime] = None) -> bool:
    return has_passed(invitation.token_expires_at, now)


def is_active(invitation: FarmInvitation, now: Optional[datetime] = None) -> bool:
    return invitation.status == InvitationStatus.PENDING and not is_expired(invitation, now)


# ---------------------------------------------------------------------------
# Transition helpers
# ---------------------------------------------------------------------------


def _transition(
    db: Session,
    invitation_id: UUID,
    status: InvitationStatus,
    now: datetime,
    **values,
) -> bool:
    """Move a pending invitation to ``status``. False when someone got there first."""
    changes = {getattr(FarmInvitation, name): value for name, value in values.items()}
    changes.update({FarmInvitation.status: status, FarmInvitation.resolved_at: now})
    claimed = (
        db.query(FarmInvitation)
        .filter(
            FarmInvitation.id == invitation_id,
            FarmInvitation.status == InvitationStatus.PENDING,
        )
        .update(changes, synchronize_session=False)
    )
    return claimed == 1


def _mark_expired(db: Session, invitation: FarmInvitation, now: datetime) -> None:
    with atomic(db):
        flipped = _transition(db, invitation.id, InvitationStatus.EXPIRED, now)
    if flipped:
        logger.info("Invitation %s expired for %s", invitation.id, invitation.invited_email)
    db.refresh(invitation)


def _ensure_pending(db: Session, invitation: FarmInvitation, now: datetime) -> None:
    if invitation.status == InvitationStatus.PENDING and is_expired(invitation, now):
        _mark_expired(db, invitation, now)
        raise ExpiredError("This invitation has expired")
    if invitation.status == InvitationStatus.EXPIRED:
        raise ExpiredError("This invitation has expired")
    if invitation.status != InvitationStatus.PENDING:
        raise ConflictError(
            f"This invitation has already been {invitation.status.value}",
            details={"status": invitation.status.value},
        )


def _ensure_invitee(invitation: FarmInvitation, principal: Principal) -> None:
    if invitation.invited_user_id is not None:
        if invitation.invited_user_id != principal.user_id:
            raise PermissionDeniedError("This invitation is addressed to another account")
        return
    if normalize_email(principal.email) != invitation.invited_email:
        raise PermissionDeniedError("This invitation is addressed to another account")
    if not principal.email_verified:
        raise PermissionDeniedError("Verify your email address before responding to invitations")


def _require_farm(view: AccountView, capability: Capability, message: str) -> UUID:
    if not can(view, capability):
        raise PermissionDeniedError(message)
    return view.farm_id


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


def invite(
    db: Session,
    principal: Principal,
    email: str,
    role: Union[str, StaffRole],
    *,
    now: Optional[datetime] = None,
) -> FarmInvitation:
    """Create a pending invitation from the caller's farm to ``email``."""
    now = now or utcnow()
    view = resolve_identity(db, principal.user_id)
    farm_id = _require_farm(view, Capability.INVITE_STAFF, "You do not have permission to invite staff")

    staff_role = parse_staff_role(role)
    if staff_role is None:
        raise ValidationError(
            "Role must be one of admin, editor or viewer", details={"role": str(role)}
        )
    if not may_grant(view.role, staff_role):
        raise PermissionDeniedError("Admins cannot invite other admins")

    invited_email = validate_email_address(email)
    if invited_email == normalize_email(view.email):
        raise ConflictError("You cannot invite yourself")

    invitee = db.query(User).filter(User.email == invited_email).first()
    if invitee is not None and _is_farm_member(db, farm_id, invitee.id):
        raise ConflictError(f"{invited_email} is already a member of this farm")

    existing = _find_pending(db, farm_id, invited_email)
    if existing is not None and not is_expired(existing, now):
        raise ConflictError(f"{invited_email} has already been invited to this farm")

    invitation = FarmInvitation(
        inviter_farm_id=farm_id,
        inviter_user_id=view.user_id,
        invited_email=invited_email,
        invited_user_id=invitee.id if invitee is not None else None,
        invited_role=staff_role,
        status=InvitationStatus.PENDING,
        token=secrets.token_urlsafe(settings.INVITATION_TOKEN_BYTES),
        token_expires_at=now + timedelta(days=settings.INVITATION_EXPIRE_DAYS),
        created_at=now,
    )

    try:
        with atomic(db):
            current = _find_pending(db, farm_id, invited_email)
            if current is not None:
                if not is_expired(current, now):
                    raise ConflictError(f"{invited_email} has already been invited to this farm")
                _transition(db, current.id, InvitationStatus.EXPIRED, now)
                db.flush()
            db.add(invitation)
    except IntegrityError as exc:
        logger.info("Concurrent invite for %s on farm %s lost the race", invited_email, farm_id)
        raise ConflictError(f"{invited_email} has already been invited to this farm") from exc

    db.refresh(invitation)
    logger.info(
        "Farm %s invited %s as %s (invitation %s)",
        farm_id,
        invited_email,
        staff_role.value,
        invitation.id,
    )
    return invitation


# ---------------------------------------------------------------------------
# Accept
# ---------------------------------------------------------------------------


def _release_owned_farms(db: Session, user: User, now: datetime) -> None:
    """An owner may only walk away from farms that have no staff left.

    Invitations those farms still have outstanding are revoked, otherwise the
    farm could gain staff while nobody is there to manage them.
    """
    owned_ids = [row[0] for row in db.query(Farm.id).filter(Farm.owner_id == user.id).all()]
    if not owned_ids:
        return

    staffed = db.query(FarmStaff.farm_id).filter(FarmStaff.farm_id.in_(owned_ids)).first()
    if staffed is not None:
        raise ConflictError(
            "Remove the staff of the farm you own before joining another farm",
            details={"farm_id": str(staffed[0])},
        )

    withdrawn = (
        db.query(FarmInvitation)
        .filter(
            FarmInvitation.inviter_farm_id.in_(owned_ids),
            FarmInvitation.status == InvitationStatus.PENDING,
        )
        .update(
            {FarmInvitation.status: InvitationStatus.REVOKED, FarmInvitation.resolved_at: now},
            synchronize_session=False,
        )
    )
    if withdrawn:
        logger.info("Revoked %d outstanding invitation(s) from farms left by %s", withdrawn, user.id)


def _leave_current_staff(db: Session, user: User, target_farm_id: UUID) -> None:
    previous = db.query(FarmStaff).filter(FarmStaff.user_id == user.id).all()
    for row in previous:
        if row.farm_id != target_farm_id:
            logger.info("User %s leaves staff of farm %s", user.id, row.farm_id)
            db.delete(row)
    db.flush()


def _join_farm(db: Session, user: User, farm: Farm, role: StaffRole) -> None:
    db.add(FarmStaff(farm_id=farm.id, user_id=user.id, role=role))
    db.flush()
    user.farm_id = farm.id
    user.is_farm_owner = False
    user.role_on_current_farm = role.value


def _accept(
    db: Session,
    principal: Principal,
    invitation: FarmInvitation,
    now: Optional[datetime],
) -> AcceptResult:
    now = now or utcnow()
    _ensure_invitee(invitation, principal)
    _ensure_pending(db, invitation, now)

    invitation_id = invitation.id
    farm_missing = False
    result: Optional[AcceptResult] = None

    try:
        with atomic(db):
            farm = (
                db.query(Farm)
                .filter(Farm.id == invitation.inviter_farm_id)
                .with_for_update()
                .first()
            )
            if farm is None:
                if not _transition(db, invitation_id, InvitationStatus.ERROR_FARM_NOT_FOUND, now):
                    raise ConflictError("This invitation was already handled")
                farm_missing = True
            else:
                if not _transition(
                    db,
                    invitation_id,
                    InvitationStatus.ACCEPTED,
                    now,
                    invited_user_id=principal.user_id,
                ):
                    raise ConflictError("This invitation was already handled")

                user = (
                    db.query(User)
                    .filter(User.id == principal.user_id)
                    .with_for_update()
                    .first()
                )
                if user is None:
                    raise NotFoundError("Register an account before accepting invitations")

                result = _apply_membership(db, user, farm, invitation.invited_role, now)
    except IntegrityError as exc:
        logger.warning("Accepting invitation %s hit a constraint: %s", invitation_id, exc)
        raise ConflictError("This invitation could not be accepted, try again") from exc

    db.refresh(invitation)
    if farm_missing:
        logger.warning(
            "Invitation %s points at missing farm %s", invitation_id, invitation.inviter_farm_id
        )
        raise NotFoundError("The inviting farm no longer exists")

    logger.info(
        "User %s accepted invitation %s to farm %s as %s",
        principal.user_id,
        invitation_id,
        result.new_farm_id,
        result.new_role,
    )
    return result


def _apply_membership(
    db: Session, user: User, farm: Farm, role: StaffRole, now: datetime
) -> AcceptResult:
    if farm.owner_id == user.id:
        user.farm_id = farm.id
        user.is_farm_owner = True
        user.role_on_current_farm = user.selected_plan.value
        return AcceptResult(farm.id, user.selected_plan.value, farm.name, already_member=True)

    current = (
        db.query(FarmStaff)
        .filter(FarmStaff.farm_id == farm.id, FarmStaff.user_id == user.id)
        .first()
    )

    _release_owned_farms(db, user, now)
    _leave_current_staff(db, user, farm.id)

    if current is not None:
        user.farm_id = farm.id
        user.is_farm_owner = False
        user.role_on_current_farm = current.role.value
        return AcceptResult(farm.id, current.role.value, farm.name, already_member=True)

    _join_farm(db, user, farm, role)
    return AcceptResult(farm.id, role.value, farm.name)


def accept(
    db: Session,
    principal: Principal,
    invitation_id: UUID,
    *,
    now: Optional[datetime] = None,
) -> AcceptResult:
    invitation = get_invitation_or_404(db, invitation_id)
    return _accept(db, principal, invitation, now)


def accept_by_token(
    db: Session,
    principal: Principal,
    token: str,
    *,
    now: Optional[datetime] = None,
) -> AcceptResult:
    """Accept through the opaque link token mailed to the invitee."""
    if not token:
        raise ValidationError("An invitation token is required")
    invitation = db.query(FarmInvitation).filter(FarmInvitation.token == token).first()
    if invitation is None:
        raise NotFoundError("This invitation link is invalid")
    return _accept(db, principal, invitation, now)


# ---------------------------------------------------------------------------
# Decline / revoke
# ---------------------------------------------------------------------------


def decline(
    db: Session,
    principal: Principal,
    invitation_id: UUID,
    *,
    now: Optional[datetime] = None,
) -> FarmInvitation:
    now = now or utcnow()
    invitation = get_invitation_or_404(db, invitation_id)
    _ensure_invitee(invitation, principal)
    _ensure_pending(db, invitation, now)

    with atomic(db):
        if not _transition(db, invitation.id, InvitationStatus.DECLINED, now):
            raise ConflictError("This invitation was already handled")

    db.refresh(invitation)
    logger.info("Invitation %s declined by %s", invitation.id, principal.user_id)
    return invitation


def revoke(
    db: Session,
    principal: Principal,
    invitation_id: UUID,
    *,
    now: Optional[datetime] = None,
) -> FarmInvitation:
    now = now or utcnow()
    view = resolve_identity(db, principal.user_id)
    farm_id = _require_farm(
        view, Capability.REVOKE_INVITATION, "You do not have permission to revoke invitations"
    )

    invitation = get_invitation_or_404(db, invitation_id)
    if invitation.inviter_farm_id != farm_id:
        raise PermissionDeniedError("This invitation belongs to another farm")
    _ensure_pending(db, invitation, now)

    with atomic(db):
        if not _transition(db, invitation.id, InvitationStatus.REVOKED, now):
            raise ConflictError("This invitation was already handled")

    db.refresh(invitation)
    logger.info("Invitation %s revoked by %s", invitation.id, principal.user_id)
    return invitation


# ---------------------------------------------------------------------------
# Listings and hygiene
# ---------------------------------------------------------------------------


def list_farm_invitations(
    db: Session,
    principal: Principal,
    *,
    now: Optional[datetime] = None,
) -> List[FarmInvitation]:
    """Active invitations sent from the caller's farm, newest first."""
    view = resolve_identity(db, principal.user_id)
    farm_id = _require_farm(
        view, Capability.INVITE_STAFF, "You do not have permission to view this farm's invitations"
    )
    pending = (
        db.query(FarmInvitation)
        .filter(
            FarmInvitation.inviter_farm_id == farm_id,
            FarmInvitation.status == InvitationStatus.PENDING,
        )
        .order_by(FarmInvitation.created_at.desc())
        .all()
    )
    return [invitation for invitation in pending if is_active(invitation, now)]


def list_my_invitations(
    db: Session,
    principal: Principal,
    *,
    now: Optional[datetime] = None,
) -> List[FarmInvitation]:
    """Active invitations addressed to the caller, by account or by email."""
    email = normalize_email(principal.email)
    pending = (
        db.query(FarmInvitation)
        .filter(
            FarmInvitation.status == InvitationStatus.PENDING,
            or_(
                FarmInvitation.invited_email == email,
                FarmInvitation.invited_user_id == principal.user_id,
            ),
        )
        .order_by(FarmInvitation.created_at.desc())
        .all()
    )
    return [invitation for invitation in pending if is_active(invitation, now)]


def expire_stale_invitations(db: Session, *, now: Optional[datetime] = None) -> int:
    """Flip every pending-but-expired invitation to ``expired``. Returns the count."""
    now = now or utcnow()
    pending = (
        db.query(FarmInvitation)
        .filter(FarmInvitation.status == InvitationStatus.PENDING)
        .all()
    )
    stale_ids = [invitation.id for invitation in pending if is_expired(invitation, now)]
    if not stale_ids:
        return 0

    expired = 0
    with atomic(db):
        for invitation_id in stale_ids:
            if _transition(db, invitation_id, InvitationStatus.EXPIRED, now):
                expired += 1

    logger.info("Expired %d stale invitation(s)", expired)
    return expired
