from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261001_0002"
down_revision = "20261001_0001"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "leagues",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("invite_code", sa.String(length=12), nullable=False),
        sa.Column("counting_start_date", sa.Date(), nullable=True),
        sa.Column("backfill_limit", sa.Integer(), nullable=True),
        sa.Column("require_verification_photo", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("allow_manual_entry", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint("backfill_limit IS NULL OR backfill_limit >= 0", name="ck_leagues_backfill_nonneg"),
    )
    op.create_index("ix_leagues_owner_id", "leagues", ["owner_id"])
    op.create_index("ix_leagues_invite_code", "leagues", ["invite_code"], unique=True)

    op.create_table(
        "memberships",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("league_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("leagues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="member"),
        sa.Column("joined_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("league_id", "user_id", name="uq_membership_unique"),
        sa.CheckConstraint("role IN ('owner', 'admin', 'member')", name="ck_memberships_role"),
    )
    op.create_index("ix_memberships_league_id", "memberships", ["league_id"])
    op.create_index("ix_memberships_user_id", "memberships", ["user_id"])

def downgrade() -> None:
    op.drop_index("ix_memberships_user_id", table_name="memberships")
    op.drop_index("ix_memberships_league_id", table_name="memberships")
    op.drop_table("memberships")
    op.drop_index("ix_leagues_invite_code", table_name="leagues")
    op.drop_index("ix_leagues_owner_id", table_name="leagues")
    op.drop_table("leagues")
