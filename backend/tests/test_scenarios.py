"""End-to-end membership flows across invitation, removal and plan changes."""

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import ConflictError, NotFoundError, StoreError
from app.models import Farm, FarmInvitation, FarmStaff, InvitationStatus, StaffRole
from app.models.user import PlanTier
from app.services import invitation_service, membership_service
from app.services.identity_resolver import resolve_identity
from app.services.plan_service import PlanService

from conftest import load_user


def _staff_of(db, farm_id):
    return {
        (row.user_id, row.role)
        for row in db.query(FarmStaff).filter(FarmStaff.farm_id == farm_id).all()
    }


class TestOwnerInvitesEditor:
    def test_alice_joins_as_editor(self, db, owner, register):
        f1 = load_user(db, owner).farm_id
        invitation = invitation_service.invite(db, owner, "alice@example.com", "editor")
        alice = register("alice@example.com", "Alice")

        result = invitation_service.accept(db, alice, invitation.id)

        user = load_user(db, alice)
        assert result.new_farm_id == f1
        assert user.farm_id == f1
        assert user.role_on_current_farm == "editor"
        assert _staff_of(db, f1) == {(alice.user_id, StaffRole.EDITOR)}
        # Her own registration farm is kept, just no longer current
        assert db.query(Farm).filter(Farm.owner_id == alice.user_id).count() == 1


class TestOwnerRemovesAlice:
    def test_alice_lands_on_her_own_farm(self, db, owner, register, join):
        f1 = load_user(db, owner).farm_id
        alice = register("alice@example.com", "Alice", plan="pro")
        join(owner, alice, "editor")

        result = membership_service.remove_staff(db, owner, f1, alice.user_id)

        user = load_user(db, alice)
        f2 = db.query(Farm).filter(Farm.id == result.fallback_farm_id).one()
        assert f2.owner_id == alice.user_id
        assert user.farm_id == f2.id
        assert user.role_on_current_farm == user.selected_plan.value == "pro"
        assert alice.user_id not in {user_id for user_id, _ in _staff_of(db, f1)}


class TestRevokedBeforeAccept:
    def test_bob_cannot_accept(self, db, owner, register):
        invitation = invitation_service.invite(db, owner, "bob@example.com", "admin")
        invitation_service.revoke(db, owner, invitation.id)
        bob = register("bob@example.com", "Bob")

        with pytest.raises((ConflictError, NotFoundError)):
            invitation_service.accept(db, bob, invitation.id)

        assert load_user(db, bob).is_farm_owner is True
        assert _staff_of(db, load_user(db, owner).farm_id) == set()


class TestDowngrade:
    def test_role_follows_plan_in_same_commit(self, db, owner):
        assert load_user(db, owner).role_on_current_farm == "pro"

        PlanService.downgrade_to_free(db, owner)

        user = load_user(db, owner)
        assert (user.selected_plan, user.role_on_current_farm) == (PlanTier.FREE, "free")


class TestAcceptAtomicity:
    def test_failure_after_staff_insert_rolls_back_everything(self, db, owner, register, join, monkeypatch):
        rival = register("rival@example.com", "Rival")
        alice = register("alice@example.com", "Alice")
        join(rival, alice, "viewer")
        rival_farm = load_user(db, rival).farm_id

        invitation = invitation_service.invite(db, owner, alice.email, "editor")
        owner_farm = load_user(db, owner).farm_id

        def staff_then_crash(session, user, farm, role):
            session.add(FarmStaff(farm_id=farm.id, user_id=user.id, role=role))
            session.flush()
            raise OperationalError("UPDATE users", {}, Exception("disk I/O error"))

        monkeypatch.setattr(invitation_service, "_join_farm", staff_then_crash)

        with pytest.raises(StoreError):
            invitation_service.accept(db, alice, invitation.id)

        db.expire_all()
        db.refresh(invitation)
        assert invitation.status == InvitationStatus.PENDING
        assert _staff_of(db, owner_farm) == set()
        assert _staff_of(db, rival_farm) == {(alice.user_id, StaffRole.VIEWER)}
        user = load_user(db, alice)
        assert user.farm_id == rival_farm
        assert user.role_on_current_farm == "viewer"

        # The same invitation still goes through once the store recovers
        monkeypatch.undo()
        result = invitation_service.accept(db, alice, invitation.id)
        assert result.new_farm_id == owner_farm
        assert _staff_of(db, rival_farm) == set()


class TestStaffUniqueness:
    def test_moves_between_farms_never_duplicate(self, db, owner, register, join):
        rival = register("rival@example.com", "Rival")
        alice = register("alice@example.com", "Alice")

        join(owner, alice, "viewer")
        join(rival, alice, "editor")
        membership_service.remove_staff(db, rival, load_user(db, rival).farm_id, alice.user_id)
        join(owner, alice, "admin")

        rows = db.query(FarmStaff).filter(FarmStaff.user_id == alice.user_id).all()
        assert len(rows) == 1
        assert rows[0].farm_id == load_user(db, owner).farm_id
        assert resolve_identity(db, alice.user_id).role_value == "admin"

        per_farm = {}
        for row in db.query(FarmStaff).all():
            per_farm.setdefault(row.farm_id, []).append(row.user_id)
        assert all(len(ids) == len(set(ids)) for ids in per_farm.values())


class TestFarmDeletedBeforeAccept:
    def test_marks_error_and_reports_not_found(self, db, register):
        rival = register("rival@example.com", "Rival")
        alice = register("alice@example.com", "Alice")
        invitation = invitation_service.invite(db, rival, alice.email, "viewer")

        farm = db.query(Farm).filter(Farm.owner_id == rival.user_id).one()
        db.delete(farm)
        db.commit()

        with pytest.raises(NotFoundError):
            invitation_service.accept(db, alice, invitation.id)

        stored = db.query(FarmInvitation).filter(FarmInvitation.id == invitation.id).one()
        assert stored.status == InvitationStatus.ERROR_FARM_NOT_FOUND
        assert stored.resolved_at is not None
        assert load_user(db, alice).is_farm_owner is True
