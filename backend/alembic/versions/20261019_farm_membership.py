"""farm membership: users, farms, farm_staff, farm_invitations

Revision ID: 20261019_farm_membership
Revises:
Create Date: 2026-10-19

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "20261019_farm_membership"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


PLAN_TIER = postgresql.ENUM("free", "pro", "agribusiness", name="plantier", create_type=False)
STAFF_ROLE = postgresql.ENUM("admin", "editor", "viewer", name="staffrole", create_type=False)
INVITATION_STATUS = postgresql.ENUM(
    "pending",
    "accepted",
    "declined",
    "revoked",
    "expired",
    "error_farm_not_found",
    name="invitationstatus",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    PLAN_TIER.create(bind, checkfirst=True)
    STAFF_ROLE.create(bind, checkfirst=True)
    INVITATION_STATUS.create(bind, checkfirst=True)

    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(200), nullable=True),
        # No FK: a dangling farm_id is tolerated on read
        sa.Column("farm_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("is_farm_owner", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("role_on_current_farm", sa.String(20), nullable=True),
        sa.Column("selected_plan", PLAN_TIER, nullable=False, server_default="free"),
        sa.Column("subscription_status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("billing_customer_id", sa.String(255), nullable=True),
        sa.Column("billing_subscription_id", sa.String(255), nullable=True),
        sa.Column("settings", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_farm_id", "users", ["farm_id"])

    op.create_table(
        "farms",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("location", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
    )
    op.create_index("ix_farms_owner_id", "farms", ["owner_id"])

    op.create_table(
        "farm_staff",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("farm_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("farms.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", STAFF_ROLE, nullable=False, server_default="viewer"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()")),
        sa.UniqueConstraint("user_id", name="uq_farm_staff_user_id"),
    )
    op.create_index("ix_farm_staff_farm_id", "farm_staff", ["farm_id"])

    op.create_table(
        "farm_invitations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("inviter_farm_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("inviter_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("invited_email", sa.String(255), nullable=False),
        sa.Column("invited_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("invited_role", STAFF_ROLE, nullable=False),
        sa.Column("status", INVITATION_STATUS, nullable=False, server_default="pending"),
        sa.Column("token", sa.String(128), nullable=False),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("token", name="uq_farm_invitations_token"),
    )
    op.create_index("ix_farm_invitations_farm_status", "farm_invitations", ["inviter_farm_id", "status"])
    op.create_index("ix_farm_invitations_email_status", "farm_invitations", ["invited_email", "status"])
    op.create_index(
        "uq_farm_invitations_pending",
        "farm_invitations",
        ["inviter_farm_id", "invited_email"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_farm_invitations_pending", table_name="farm_invitations")
    op.drop_index("ix_farm_invitations_email_status", table_name="farm_invitations")
    op.drop_index("ix_farm_invitations_farm_status", table_name="farm_invitations")
    op.drop_table("farm_invitations")
    op.drop_index("ix_farm_staff_farm_id", table_name="farm_staff")
    op.drop_table("farm_staff")
    op.drop_index("ix_farms_owner_id", table_name="farms")
    op.drop_table("farms")
    op.drop_index("ix_users_farm_id", table_name="users")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    INVITATION_STATUS.drop(bind, checkfirst=True)
    STAFF_ROLE.drop(bind, checkfirst=True)
    PLAN_TIER.drop(bind, checkfirst=True)
