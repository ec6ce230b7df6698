from .user import User, PlanTier, SubscriptionStatus
from .farm import Farm, FarmStaff, StaffRole
from .invitation import FarmInvitation, InvitationStatus
