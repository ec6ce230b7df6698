from sqlalchemy import Column, String, Boolean, DateTime, Enum, JSON, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base

import enum
import uuid


class PlanTier(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    AGRIBUSINESS = "agribusiness"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PENDING_PAYMENT = "pending_payment"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"


DEFAULT_USER_SETTINGS = {
    "notification_preferences": {
        "task_reminders_email": True,
        "weather_alerts_email": False,
        "ai_insights_email": True,
        "staff_activity_email": False,
    },
    "preferred_area_unit": "acres",
    "preferred_weight_unit": "kg",
    "theme": "system",
}


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    display_name = Column(String(200))
    # Not a foreign key: a dangling farm_id is tolerated and repaired out of band
    farm_id = Column(Uuid, nullable=True, index=True)
    is_farm_owner = Column(Boolean, nullable=False, default=False)
    role_on_current_farm = Column(String(20), nullable=True)
    selected_plan = Column(
        Enum(
            PlanTier,
            name="plantier",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=PlanTier.FREE,
    )
    subscription_status = Column(String(20), nullable=False, default=SubscriptionStatus.ACTIVE.value)
    billing_customer_id = Column(String(255), nullable=True)
    billing_subscription_id = Column(String(255), nullable=True)
    settings = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owned_farms = relationship("Farm", back_populates="owner", foreign_keys="Farm.owner_id")
    staff_membership = relationship(
        "FarmStaff",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', farm_id={self.farm_id})>"
