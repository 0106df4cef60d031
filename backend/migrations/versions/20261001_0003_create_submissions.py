from __future__ import annotations
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = "20261001_0003"
down_revision = "20261001_0002"
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "submissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("league_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("leagues.id", ondelete="CASCADE"), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("for_date", sa.Date(), nullable=False),
        sa.Column("steps", sa.Integer(), nullable=False),
        sa.Column("partial", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("proof_path", sa.Text(), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=True),
        sa.Column("tolerance_used", sa.Float(), nullable=True),
        sa.Column("extracted_steps", sa.Integer(), nullable=True),
        sa.Column("extracted_date", sa.Date(), nullable=True),
        sa.Column("verification_notes", sa.Text(), nullable=True),
        sa.Column("flagged", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("flag_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.TIMESTAMP(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.UniqueConstraint("user_id", "league_id", "for_date", name="uq_submission_one_per_day"),
        sa.CheckConstraint("steps > 0", name="ck_submissions_steps_positive"),
        sa.CheckConstraint("NOT flagged OR flag_reason IS NOT NULL", name="ck_submissions_flag_reason"),
    )
    op.create_index("ix_submissions_league_id", "submissions", ["league_id"])
    op.create_index("ix_submissions_user_id", "submissions", ["user_id"])
    op.create_index("ix_submissions_for_date", "submissions", ["for_date"])

def downgrade() -> None:
    op.drop_index("ix_submissions_for_date", table_name="submissions")
    op.drop_index("ix_submissions_user_id", table_name="submissions")
    op.drop_index("ix_submissions_league_id", table_name="submissions")
    op.drop_table("submissions")
