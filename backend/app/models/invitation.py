"""
Farm staff invitations.

An invitation is addressed to an email, optionally resolved to a registered
user, and moves out of ``pending`` exactly once.
"""

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, String, Uuid, text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
import uuid

from app.database import Base
from app.models.farm import StaffRole


class InvitationStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REVOKED = "revoked"
    EXPIRED = "expired"
    ERROR_FARM_NOT_FOUND = "error_farm_not_found"


class FarmInvitation(Base):
    __tablename__ = "farm_invitations"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Kept as a plain column so the invitation outlives a deleted farm
    inviter_farm_id = Column(Uuid, nullable=False)
    inviter_user_id = Column(Uuid, ForeignKey("users.id"), nullable=False)

    invited_email = Column(String(255), nullable=False)
    invited_user_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    invited_role = Column(
        Enum(
            StaffRole,
            name="staffrole",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )

    status = Column(
        Enum(
            InvitationStatus,
            name="invitationstatus",
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
        default=InvitationStatus.PENDING,
    )
    token = Column(String(128), nullable=False, unique=True)
    token_expires_at = Column(DateTime(timezone=True), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    inviter = relationship("User", foreign_keys=[inviter_user_id])
    invitee = relationship("User", foreign_keys=[invited_user_id])
    farm = relationship(
        "Farm",
        primaryjoin="foreign(FarmInvitation.inviter_farm_id) == Farm.id",
        viewonly=True,
    )

    __table_args__ = (
        Index("ix_farm_invitations_farm_status", "inviter_farm_id", "status"),
        Index("ix_farm_invitations_email_status", "invited_email", "status"),
        # One live invitation per farm and address
        Index(
            "uq_farm_invitations_pending",
            "inviter_farm_id",
            "invited_email",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    @property
    def farm_name(self):
        return self.farm.name if self.farm is not None else None

    @property
    def inviter_name(self):
        if self.inviter is None:
            return None
        return self.inviter.display_name or self.inviter.email

    def __repr__(self):
        return f"<FarmInvitation {self.invited_email} -> Farm {self.inviter_farm_id} ({self.status})>"
