"""Tests for registration, staff removal, role changes and farm profile edits."""

import uuid

import pytest

from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models import Farm, FarmInvitation, FarmStaff, StaffRole, User
from app.models.user import PlanTier, SubscriptionStatus
from app.services import membership_service
from app.services import invitation_service
from app.services.identity_resolver import resolve_identity

from conftest import load_user, make_principal


def _farm_of(db, principal):
    return db.query(Farm).filter(Farm.id == load_user(db, principal).farm_id).one()


class TestRegister:
    def test_creates_user_and_owned_farm(self, db):
        principal = make_principal("Fresh@Meadow.farm")
        user = membership_service.register_user(db, principal, display_name="Fresh", plan="agribusiness")

        farm = db.query(Farm).filter(Farm.owner_id == user.id).one()
        assert user.email == "fresh@meadow.farm"
        assert user.farm_id == farm.id
        assert user.is_farm_owner is True
        assert user.role_on_current_farm == "agribusiness"
        assert user.selected_plan == PlanTier.AGRIBUSINESS
        assert user.subscription_status == SubscriptionStatus.PENDING_PAYMENT.value
        assert farm.name == "Fresh's Personal Farm"
        assert user.settings["preferred_area_unit"] == "acres"

    def test_free_plan_is_active(self, db, register):
        jo = register("jo@meadow.farm", "Jo")
        assert load_user(db, jo).subscription_status == "active"

    def test_duplicate_email(self, db, register):
        register("dup@meadow.farm")
        with pytest.raises(ConflictError):
            membership_service.register_user(db, make_principal("DUP@meadow.farm"))
        assert db.query(User).count() == 1
        assert db.query(Farm).count() == 1

    def test_duplicate_principal(self, db, register):
        jo = register("jo@meadow.farm")
        with pytest.raises(ConflictError):
            membership_service.register_user(db, jo)

    def test_unknown_plan(self, db):
        with pytest.raises(ValidationError):
            membership_service.register_user(db, make_principal("x@meadow.farm"), plan="platinum")

    def test_malformed_principal_email_rejected(self, db):
        with pytest.raises(ValidationError):
            membership_service.register_user(db, make_principal("jo@meadow..farm"))
        assert db.query(User).count() == 0

    def test_blank_farm_name_rejected(self, db):
        with pytest.raises(ValidationError):
            membership_service.register_user(db, make_principal("x@meadow.farm"), farm_name="   ")
        assert db.query(User).count() == 0

    def test_links_invitations_sent_before_registration(self, db, owner):
        invitation = invitation_service.invite(db, owner, "early@meadow.farm", "viewer")
        early = make_principal("early@meadow.farm")

        membership_service.register_user(db, early)

        db.refresh(invitation)
        assert invitation.invited_user_id == early.user_id


class TestRemoveStaff:
    def test_falls_back_to_previously_owned_farm(self, db, owner, register, join):
        sam = register("sam@fieldhands.farm", "Sam", farm_name="Sam's Orchard")
        join(owner, sam, "editor")
        farm = _farm_of(db, owner)

        result = membership_service.remove_staff(db, owner, farm.id, sam.user_id)

        assert result.created_fallback is False
        assert result.fallback_farm_name == "Sam's Orchard"
        user = load_user(db, sam)
        assert user.farm_id == result.fallback_farm_id
        assert user.is_farm_owner is True
        assert user.role_on_current_farm == "free"
        assert db.query(FarmStaff).filter(FarmStaff.user_id == sam.user_id).count() == 0

    def test_creates_personal_farm_when_none_owned(self, db, owner):
        # An account that never owned a farm, wired in directly as staff
        farm = _farm_of(db, owner)
        loner = User(
            id=uuid.uuid4(),
            email="loner@fieldhands.farm",
            display_name="Loner",
            farm_id=farm.id,
            is_farm_owner=False,
            role_on_current_farm="viewer",
            selected_plan=PlanTier.PRO,
            settings={},
        )
        db.add(loner)
        db.flush()
        db.add(FarmStaff(farm_id=farm.id, user_id=loner.id, role=StaffRole.VIEWER))
        db.commit()

        result = membership_service.remove_staff(db, owner, farm.id, loner.id)

        assert result.created_fallback is True
        assert result.fallback_farm_name == "Loner's Personal Farm"
        db.expire_all()
        assert loner.farm_id == result.fallback_farm_id
        assert loner.role_on_current_farm == "pro"

    def test_admin_cannot_remove_admin(self, db, owner, register, join):
        ada = register("ada@fieldhands.farm", "Ada")
        abe = register("abe@fieldhands.farm", "Abe")
        join(owner, ada, "admin")
        join(owner, abe, "admin")

        with pytest.raises(PermissionDeniedError, match="admins"):
            membership_service.remove_staff(db, ada, _farm_of(db, owner).id, abe.user_id)

    def test_admin_removes_viewer(self, db, owner, register, join):
        ada = register("ada@fieldhands.farm", "Ada")
        vic = register("vic@fieldhands.farm", "Vic")
        join(owner, ada, "admin")
        join(owner, vic, "viewer")

        result = membership_service.remove_staff(db, ada, _farm_of(db, owner).id, vic.user_id)
        assert load_user(db, vic).farm_id == result.fallback_farm_id

    def test_owner_cannot_be_removed(self, db, owner, register, join):
        ada = register("ada@fieldhands.farm", "Ada")
        join(owner, ada, "admin")

        with pytest.raises(PermissionDeniedError, match="owner"):
            membership_service.remove_staff(db, ada, _farm_of(db, owner).id, owner.user_id)

    def test_other_farm_denied(self, db, owner, register, join):
        rival = register("rival@otherfarm.farm")
        sam = register("sam@fieldhands.farm")
        join(owner, sam, "viewer")

        with pytest.raises(PermissionDeniedError):
            membership_service.remove_staff(db, rival, _farm_of(db, owner).id, sam.user_id)

    def test_not_listed(self, db, owner, register):
        stranger = register("stranger@elsewhere.farm")
        with pytest.raises(NotFoundError):
            membership_service.remove_staff(db, owner, _farm_of(db, owner).id, stranger.user_id)

    def test_editor_cannot_remove(self, db, owner, register, join):
        ed = register("ed@fieldhands.farm")
        vic = register("vic@fieldhands.farm")
        join(owner, ed, "editor")
        join(owner, vic, "viewer")

        with pytest.raises(PermissionDeniedError):
            membership_service.remove_staff(db, ed, _farm_of(db, owner).id, vic.user_id)


class TestUpdateStaffRole:
    def test_owner_promotes_to_admin(self, db, owner, register, join):
        sam = register("sam@fieldhands.farm")
        join(owner, sam, "viewer")

        row = membership_service.update_staff_role(db, owner, sam.user_id, "admin")

        assert row.role == StaffRole.ADMIN
        assert load_user(db, sam).role_on_current_farm == "admin"
        assert resolve_identity(db, sam.user_id).role_value == "admin"

    def test_admin_cannot_promote_to_admin(self, db, owner, register, join):
        ada = register("ada@fieldhands.farm")
        vic = register("vic@fieldhands.farm")
        join(owner, ada, "admin")
        join(owner, vic, "viewer")

        with pytest.raises(PermissionDeniedError, match="promote"):
            membership_service.update_staff_role(db, ada, vic.user_id, "admin")

        assert membership_service.update_staff_role(db, ada, vic.user_id, "editor").role == StaffRole.EDITOR

    def test_admin_cannot_change_admin(self, db, owner, register, join):
        ada = register("ada@fieldhands.farm")
        abe = register("abe@fieldhands.farm")
        join(owner, ada, "admin")
        join(owner, abe, "admin")

        with pytest.raises(PermissionDeniedError):
            membership_service.update_staff_role(db, ada, abe.user_id, "viewer")

    def test_owner_role_is_fixed(self, db, owner, register, join):
        ada = register("ada@fieldhands.farm")
        join(owner, ada, "admin")

        with pytest.raises(PermissionDeniedError, match="owner"):
            membership_service.update_staff_role(db, ada, owner.user_id, "viewer")

    def test_invalid_role(self, db, owner, register, join):
        sam = register("sam@fieldhands.farm")
        join(owner, sam, "viewer")

        with pytest.raises(ValidationError):
            membership_service.update_staff_role(db, owner, sam.user_id, "owner")


class TestFarmProfile:
    def test_owner_updates_name_and_location(self, db, owner):
        farm = membership_service.update_farm_profile(
            db, owner, name="  Greener Acres ", location={"latitude": 1.5, "longitude": 36.8}
        )
        assert farm.name == "Greener Acres"
        assert farm.location == {"latitude": 1.5, "longitude": 36.8}

    def test_admin_cannot_edit_profile(self, db, owner, register, join):
        ada = register("ada@fieldhands.farm")
        join(owner, ada, "admin")

        with pytest.raises(PermissionDeniedError):
            membership_service.update_farm_profile(db, ada, name="Hijacked")
        assert _farm_of(db, owner).name == "Green Acres"

    def test_empty_name(self, db, owner):
        with pytest.raises(ValidationError):
            membership_service.update_farm_profile(db, owner, name="")

    def test_pending_invitations_survive_profile_edit(self, db, owner):
        invitation_service.invite(db, owner, "x@fieldhands.farm", "viewer")
        membership_service.update_farm_profile(db, owner, name="Renamed")
        assert db.query(FarmInvitation).count() == 1
