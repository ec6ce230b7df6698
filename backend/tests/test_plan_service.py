"""Tests for the plan/role bridge and billing event mapping."""

import uuid

import pytest

from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.models.user import PlanTier
from app.services.identity_resolver import resolve_identity
from app.services.plan_service import PlanService

from conftest import load_user


def _event(event_type, **obj):
    return {"id": f"evt_{uuid.uuid4().hex[:8]}", "type": event_type, "data": {"object": obj}}


class TestApplyPlanChange:
    def test_owner_role_follows_plan(self, db, register):
        jo = register("jo@meadow.farm", "Jo")

        PlanService.apply_plan_change(db, jo.user_id, "pro", "active")

        user = load_user(db, jo)
        assert user.selected_plan == PlanTier.PRO
        assert user.role_on_current_farm == "pro"
        assert resolve_identity(db, jo.user_id).role_value == "pro"

    def test_staff_role_untouched(self, db, owner, register, join):
        sam = register("sam@fieldhands.farm", "Sam")
        join(owner, sam, "editor")

        PlanService.apply_plan_change(db, sam.user_id, PlanTier.AGRIBUSINESS, "active")

        user = load_user(db, sam)
        assert user.selected_plan == PlanTier.AGRIBUSINESS
        assert user.role_on_current_farm == "editor"
        assert resolve_identity(db, sam.user_id).role_value == "editor"

    def test_status_spelling_normalized(self, db, register):
        jo = register("jo@meadow.farm")
        PlanService.apply_plan_change(db, jo.user_id, None, "canceled")
        assert load_user(db, jo).subscription_status == "cancelled"

    def test_unknown_status(self, db, register):
        jo = register("jo@meadow.farm")
        with pytest.raises(ValidationError):
            PlanService.apply_plan_change(db, jo.user_id, None, "on_fire")

    def test_unknown_user(self, db):
        with pytest.raises(NotFoundError):
            PlanService.apply_plan_change(db, uuid.uuid4(), "pro", "active")


class TestDowngrade:
    def test_owner_downgrades(self, db, owner):
        user = PlanService.downgrade_to_free(db, owner)
        assert user.selected_plan == PlanTier.FREE
        assert user.subscription_status == "active"
        assert user.role_on_current_farm == "free"

    def test_already_free(self, db, register):
        jo = register("jo@meadow.farm")
        with pytest.raises(ConflictError):
            PlanService.downgrade_to_free(db, jo)

    def test_staff_cannot_manage_billing(self, db, owner, register, join):
        sam = register("sam@fieldhands.farm", plan="pro")
        join(owner, sam, "admin")
        with pytest.raises(PermissionDeniedError):
            PlanService.downgrade_to_free(db, sam)


class TestBillingEvents:
    def test_checkout_completed(self, db, register):
        jo = register("jo@meadow.farm")
        event = _event(
            "checkout.session.completed",
            customer="cus_123",
            subscription="sub_123",
            metadata={"user_id": str(jo.user_id), "plan": "agribusiness"},
        )

        user = PlanService.handle_billing_event(db, event)

        assert user.selected_plan == PlanTier.AGRIBUSINESS
        assert user.billing_customer_id == "cus_123"
        assert user.billing_subscription_id == "sub_123"
        assert user.role_on_current_farm == "agribusiness"

    def test_subscription_updated_maps_price(self, db, register):
        jo = register("jo@meadow.farm")
        PlanService.apply_plan_change(db, jo.user_id, None, "active", billing_customer_id="cus_9")

        event = _event(
            "customer.subscription.updated",
            id="sub_9",
            customer="cus_9",
            status="past_due",
            items={"data": [{"price": {"id": "price_pro_monthly"}}]},
        )
        user = PlanService.handle_billing_event(db, event)

        assert user.selected_plan == PlanTier.PRO
        assert user.subscription_status == "past_due"

    def test_subscription_deleted_returns_to_free(self, db, owner):
        event = _event("customer.subscription.deleted", metadata={"user_id": str(owner.user_id)})
        user = PlanService.handle_billing_event(db, event)
        assert user.selected_plan == PlanTier.FREE
        assert user.subscription_status == "cancelled"
        assert user.role_on_current_farm == "free"

    @pytest.mark.parametrize(
        "event_type, expected",
        [("invoice.paid", "active"), ("invoice.payment_failed", "past_due")],
    )
    def test_invoice_events_keep_plan(self, db, owner, event_type, expected):
        user = PlanService.handle_billing_event(
            db, _event(event_type, metadata={"user_id": str(owner.user_id)})
        )
        assert user.selected_plan == PlanTier.PRO
        assert user.subscription_status == expected

    def test_unhandled_event_ignored(self, db, owner):
        assert PlanService.handle_billing_event(db, _event("charge.refunded")) is None

    def test_unknown_account_ignored(self, db):
        event = _event("invoice.paid", customer="cus_nobody")
        assert PlanService.handle_billing_event(db, event) is None
