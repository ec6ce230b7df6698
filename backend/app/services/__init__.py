from .identity_resolver import AccountView, StaffMemberView, resolve_identity
from .plan_service import PlanService

__all__ = [
    "AccountView",
    "StaffMemberView",
    "resolve_identity",
    "PlanService",
]
