from __future__ import annotations
import uuid
from datetime import date, datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Integer, Float, Boolean, Date, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from stepleague.db import Base


class Submission(Base):
    __tablename__ = "submissions"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)

    league_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("leagues.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )

    for_date: Mapped[date] = mapped_column(Date(), index=True, nullable=False)
    steps: Mapped[int] = mapped_column(Integer, nullable=False)
    partial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # object key inside the proofs bucket, never a URL
    proof_path: Mapped[str | None] = mapped_column(Text(), nullable=True)

    verified: Mapped[bool | None] = mapped_column(Boolean, nullable=True)  # None = not yet verified
    tolerance_used: Mapped[float | None] = mapped_column(Float, nullable=True)
    extracted_steps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    extracted_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    verification_notes: Mapped[str | None] = mapped_column(Text(), nullable=True)

    flagged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    flag_reason: Mapped[str | None] = mapped_column(Text(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "league_id", "for_date", name="uq_submission_one_per_day"),
    )
