from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from uuid import UUID

from app.models.farm import StaffRole
from app.models.user import PlanTier
from app.services.identity_resolver import AccountView


class FarmLocation(BaseModel):
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    address: Optional[str] = None


class RegisterRequest(BaseModel):
    display_name: Optional[str] = Field(default=None, max_length=200)
    farm_name: Optional[str] = Field(default=None, max_length=255)
    plan: PlanTier = PlanTier.FREE
    location: Optional[FarmLocation] = None


class StaffMemberResponse(BaseModel):
    user_id: UUID
    role: StaffRole
    display_name: Optional[str] = None
    email: Optional[str] = None

    class Config:
        from_attributes = True


class AccountResponse(BaseModel):
    """Resolved account: farm, role and (for managers) the staff list."""
    user_id: UUID
    email: str
    display_name: Optional[str] = None
    farm_id: Optional[UUID] = None
    farm_name: Optional[str] = None
    farm_location: Optional[Dict[str, Any]] = None
    is_farm_owner: bool
    role: Optional[str] = None
    role_kind: Optional[str] = None
    selected_plan: PlanTier
    subscription_status: str
    staff: List[StaffMemberResponse] = []
    settings: Dict[str, Any] = {}

    @classmethod
    def from_view(cls, view: AccountView) -> "AccountResponse":
        return cls(
            user_id=view.user_id,
            email=view.email,
            display_name=view.display_name,
            farm_id=view.farm_id,
            farm_name=view.farm_name,
            farm_location=view.farm_location,
            is_farm_owner=view.is_farm_owner,
            role=view.role_value,
            role_kind=view.role.kind if view.role is not None else None,
            selected_plan=view.selected_plan,
            subscription_status=view.subscription_status,
            staff=[StaffMemberResponse.model_validate(member) for member in view.staff],
            settings=view.settings,
        )


class FarmUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=255)
    location: Optional[FarmLocation] = None


class FarmResponse(BaseModel):
    id: UUID
    name: str
    owner_id: UUID
    location: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class FarmUpdateResponse(BaseModel):
    success: bool
    message: str
    farm: FarmResponse


class StaffRoleUpdateRequest(BaseModel):
    role: str


class StaffRoleUpdateResponse(BaseModel):
    success: bool
    message: str
    user_id: UUID
    role: StaffRole


class StaffRemovalResponse(BaseModel):
    success: bool
    message: str
    user_id: UUID
    fallback_farm_id: UUID
    fallback_farm_name: str
