"""Farm roles and the capability table behind every authorization decision.

A caller's role on a farm is either ``Owner(plan)`` (the owner's role value is
their plan tier) or ``Staff(role)``. Capabilities are checked against the
resolved ``AccountView``, never against anything the client sends.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, FrozenSet, Optional, Union

from app.models.farm import StaffRole
from app.models.user import PlanTier

if TYPE_CHECKING:  # pragma: no cover
    from app.services.identity_resolver import AccountView


@dataclass(frozen=True)
class Owner:
    plan: PlanTier

    @property
    def value(self) -> str:
        return self.plan.value

    @property
    def kind(self) -> str:
        return "owner"


@dataclass(frozen=True)
class Staff:
    role: StaffRole

    @property
    def value(self) -> str:
        return self.role.value

    @property
    def kind(self) -> str:
        return self.role.value


Role = Union[Owner, Staff]


class Capability(str, enum.Enum):
    INVITE_STAFF = "invite_staff"
    REMOVE_STAFF = "remove_staff"
    REVOKE_INVITATION = "revoke_invitation"
    CHANGE_STAFF_ROLE = "change_staff_role"
    MANAGE_FARM_PROFILE = "manage_farm_profile"
    MANAGE_BILLING = "manage_billing"
    EDIT_FARM_RECORDS = "edit_farm_records"
    VIEW_FARM_RECORDS = "view_farm_records"


# Role kinds: "owner" plus each staff role value
_OWNER = "owner"
_MANAGERS = frozenset({_OWNER, StaffRole.ADMIN.value})

CAPABILITIES: Dict[Capability, FrozenSet[str]] = {
    Capability.INVITE_STAFF: _MANAGERS,
    Capability.REMOVE_STAFF: _MANAGERS,
    Capability.REVOKE_INVITATION: _MANAGERS,
    Capability.CHANGE_STAFF_ROLE: _MANAGERS,
    Capability.MANAGE_FARM_PROFILE: frozenset({_OWNER}),
    Capability.MANAGE_BILLING: frozenset({_OWNER}),
    Capability.EDIT_FARM_RECORDS: frozenset({_OWNER, StaffRole.ADMIN.value, StaffRole.EDITOR.value}),
    Capability.VIEW_FARM_RECORDS: frozenset(
        {_OWNER, StaffRole.ADMIN.value, StaffRole.EDITOR.value, StaffRole.VIEWER.value}
    ),
}

# owner > admin > editor > viewer
ROLE_RANK = {
    _OWNER: 3,
    StaffRole.ADMIN.value: 2,
    StaffRole.EDITOR.value: 1,
    StaffRole.VIEWER.value: 0,
}


def role_allows(role: Optional[Role], capability: Capability) -> bool:
    if role is None:
        return False
    return role.kind in CAPABILITIES.get(capability, frozenset())


def can(view: Optional["AccountView"], capability: Capability) -> bool:
    """Pure capability check. Anything unresolved fails closed."""
    if view is None or view.farm_id is None:
        return False
    return role_allows(view.role, capability)


def is_owner(role: Optional[Role]) -> bool:
    return isinstance(role, Owner)


def is_admin(role: Optional[Role]) -> bool:
    return isinstance(role, Staff) and role.role == StaffRole.ADMIN


def outranks(actor: Optional[Role], target: Optional[Role]) -> bool:
    if actor is None or target is None:
        return False
    return ROLE_RANK[actor.kind] > ROLE_RANK[target.kind]


def may_grant(actor: Optional[Role], role: StaffRole) -> bool:
    """Owners grant any staff role; admins grant editor or viewer only."""
    if is_owner(actor):
        return True
    if is_admin(actor):
        return role != StaffRole.ADMIN
    return False


def may_manage_member(actor: Optional[Role], member_role: StaffRole) -> bool:
    """Whether ``actor`` may remove or re-role a staff member holding ``member_role``."""
    if not (is_owner(actor) or is_admin(actor)):
        return False
    return outranks(actor, Staff(member_role))


def parse_staff_role(value: Union[str, StaffRole, None]) -> Optional[StaffRole]:
    if isinstance(value, StaffRole):
        return value
    if not value:
        return None
    try:
        return StaffRole(str(value).strip().lower())
    except ValueError:
        return None
