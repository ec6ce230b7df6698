from sqlalchemy import Column, DateTime, Enum, ForeignKey, JSON, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base

import enum
import uuid


class StaffRole(str, enum.Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class Farm(Base):
    __tablename__ = "farms"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    owner_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    # {"latitude": ..., "longitude": ..., "address": ...}
    location = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    owner = relationship("User", back_populates="owned_farms", foreign_keys=[owner_id])
    staff = relationship(
        "FarmStaff",
        back_populates="farm",
        cascade="all, delete-orphan",
        order_by="FarmStaff.created_at",
    )

    def __repr__(self) -> str:
        return f"<Farm(id={self.id}, name='{self.name}', owner_id={self.owner_id})>"


class FarmStaff(Base):
    """A non-owner member of a farm. A user is staff of at most one farm."""

    __tablename__ = "farm_staff"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    farm_id = Column(Uuid, ForeignKey("farms.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    role = Column(
        Enum(
            StaffRole,
            name="staffrole",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        default=StaffRole.VIEWER,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    farm = relationship("Farm", back_populates="staff")
    user = relationship("User", back_populates="staff_membership")

    def __repr__(self) -> str:
        return f"<FarmStaff(farm_id={self.farm_id}, user_id={self.user_id}, role={self.role})>"
