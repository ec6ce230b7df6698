from .account import (
    AccountResponse,
    FarmLocation,
    FarmResponse,
    FarmUpdateRequest,
    FarmUpdateResponse,
    RegisterRequest,
    StaffMemberResponse,
    StaffRemovalResponse,
    StaffRoleUpdateRequest,
    StaffRoleUpdateResponse,
)
from .invitation import (
    AcceptResponse,
    AcceptTokenRequest,
    InvitationActionResponse,
    InvitationCreate,
    InvitationCreateResponse,
    InvitationResponse,
)
from .billing import PlanChangeResponse, WebhookAck
