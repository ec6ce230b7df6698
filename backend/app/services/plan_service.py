"""
Plan/role bridge.

Keeps a farm owner's role value equal to their plan tier. Billing is an
external collaborator: it only reports plan-change events, which are mapped
here onto ``apply_plan_change``.
"""

from typing import Any, Dict, Optional, Union
from uuid import UUID
import logging

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.core.security import Principal
from app.database import atomic
from app.models.farm import Farm
from app.models.user import PlanTier, SubscriptionStatus, User
from app.services.farm_roles import Capability, can
from app.services.identity_resolver import resolve_identity

logger = logging.getLogger(__name__)

# Billing providers spell it both ways
_STATUS_ALIASES = {
    "canceled": SubscriptionStatus.CANCELLED.value,
    "incomplete_expired": SubscriptionStatus.CANCELLED.value,
    "paused": SubscriptionStatus.PAST_DUE.value,
}


def _normalize_status(status: Union[str, SubscriptionStatus]) -> str:
    value = status.value if isinstance(status, SubscriptionStatus) else str(status or "").strip().lower()
    value = _STATUS_ALIASES.get(value, value)
    try:
        return SubscriptionStatus(value).value
    except ValueError as exc:
        raise ValidationError(f"Unknown subscription status '{status}'") from exc


def _normalize_plan(plan: Union[str, PlanTier, None]) -> Optional[PlanTier]:
    if plan is None or isinstance(plan, PlanTier):
        return plan
    try:
        return PlanTier(str(plan).strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown plan '{plan}'") from exc


class PlanService:
    """Plan changes and the billing events that drive them."""

    @staticmethod
    def plan_for_price(price_id: Optional[str]) -> Optional[PlanTier]:
        if not price_id:
            return None
        if settings.BILLING_PRICE_ID_PRO and price_id == settings.BILLING_PRICE_ID_PRO:
            return PlanTier.PRO
        if settings.BILLING_PRICE_ID_AGRIBUSINESS and price_id == settings.BILLING_PRICE_ID_AGRIBUSINESS:
            return PlanTier.AGRIBUSINESS
        return None

    @staticmethod
    def apply_plan_change(
        db: Session,
        user_id: UUID,
        plan: Union[str, PlanTier, None],
        status: Union[str, SubscriptionStatus],
        *,
        billing_customer_id: Optional[str] = None,
        billing_subscription_id: Optional[str] = None,
    ) -> User:
        """
        Update plan and status in one commit. When the user owns the farm they
        are currently on, their role value follows the new plan.
        A ``plan`` of None keeps the current plan.
        """
        plan_tier = _normalize_plan(plan)
        status_value = _normalize_status(status)

        with atomic(db):
            user = db.query(User).filter(User.id == user_id).with_for_update().first()
            if user is None:
                raise NotFoundError("Account not found", details={"user_id": str(user_id)})

            if plan_tier is not None:
                user.selected_plan = plan_tier
            user.subscription_status = status_value
            if billing_customer_id:
                user.billing_customer_id = billing_customer_id
            if billing_subscription_id:
                user.billing_subscription_id = billing_subscription_id

            owns_current = False
            if user.farm_id is not None:
                owns_current = (
                    db.query(Farm.id)
                    .filter(Farm.id == user.farm_id, Farm.owner_id == user.id)
                    .first()
                    is not None
                )
            if owns_current:
                user.role_on_current_farm = user.selected_plan.value
                user.is_farm_owner = True

        db.refresh(user)
        logger.info(
            "Plan for user %s is now %s (%s)", user.id, user.selected_plan.value, user.subscription_status
        )
        return user

    @staticmethod
    def downgrade_to_free(db: Session, principal: Principal) -> User:
        view = resolve_identity(db, principal.user_id)
        if not can(view, Capability.MANAGE_BILLING):
            raise PermissionDeniedError("Only the farm owner can change the farm's plan")
        if view.selected_plan == PlanTier.FREE:
            raise ConflictError("You are already on the free plan")
        return PlanService.apply_plan_change(
            db, principal.user_id, PlanTier.FREE, SubscriptionStatus.ACTIVE
        )

    @staticmethod
    def _find_user(db: Session, obj: Dict[str, Any]) -> Optional[User]:
        metadata = obj.get("metadata") or {}
        raw_user_id = metadata.get("user_id") or obj.get("client_reference_id")
        if raw_user_id:
            try:
                user_id = UUID(str(raw_user_id))
            except ValueError:
                logger.warning("Billing event carried a malformed user id: %s", raw_user_id)
            else:
                user = db.query(User).filter(User.id == user_id).first()
                if user is not None:
                    return user

        customer_id = obj.get("customer")
        if customer_id:
            return db.query(User).filter(User.billing_customer_id == customer_id).first()
        return None

    @staticmethod
    def _subscription_price(obj: Dict[str, Any]) -> Optional[str]:
        items = (obj.get("items") or {}).get("data") or []
        if not items:
            return None
        return (items[0].get("price") or {}).get("id")

    @staticmethod
    def handle_billing_event(db: Session, event: Dict[str, Any]) -> Optional[User]:
        """Map a billing webhook event onto a plan change.

        Returns the updated user, or None when the event is not one we act on
        or names no known account.
        """
        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}

        handled = {
            "checkout.session.completed",
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
            "invoice.paid",
            "invoice.payment_failed",
        }
        if event_type not in handled:
            logger.debug("Ignoring billing event %s", event_type)
            return None

        user = PlanService._find_user(db, obj)
        if user is None:
            logger.warning("Billing event %s does not match any account", event_type)
            return None

        customer_id = obj.get("customer")

        if event_type == "checkout.session.completed":
            metadata = obj.get("metadata") or {}
            plan = metadata.get("plan") or PlanService.plan_for_price(metadata.get("price_id"))
            return PlanService.apply_plan_change(
                db,
                user.id,
                plan,
                SubscriptionStatus.ACTIVE,
                billing_customer_id=customer_id,
                billing_subscription_id=obj.get("subscription"),
            )

        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            plan = PlanService.plan_for_price(PlanService._subscription_price(obj))
            if plan is None:
                logger.warning("Subscription %s uses an unknown price; keeping plan", obj.get("id"))
            return PlanService.apply_plan_change(
                db,
                user.id,
                plan,
                obj.get("status") or SubscriptionStatus.ACTIVE.value,
                billing_customer_id=customer_id,
                billing_subscription_id=obj.get("id"),
            )

        if event_type == "customer.subscription.deleted":
            return PlanService.apply_plan_change(db, user.id, PlanTier.FREE, SubscriptionStatus.CANCELLED)

        if event_type == "invoice.paid":
            return PlanService.apply_plan_change(db, user.id, None, SubscriptionStatus.ACTIVE)

        return PlanService.apply_plan_change(db, user.id, None, SubscriptionStatus.PAST_DUE)
