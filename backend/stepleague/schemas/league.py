from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Literal
from uuid import UUID
from datetime import date, datetime

Role = Literal["owner", "admin", "member"]

class LeagueCreate(BaseModel):
    name: str = Field(min_length=3, max_length=120)
    counting_start_date: date | None = None
    backfill_limit: int | None = Field(default=None, ge=0, description="days in the past a member may submit for")
    require_verification_photo: bool = False
    allow_manual_entry: bool = True

class LeaguePublic(BaseModel):
    id: UUID
    owner_id: UUID
    name: str
    invite_code: str
    counting_start_date: date | None
    backfill_limit: int | None
    require_verification_photo: bool
    allow_manual_entry: bool
    created_at: datetime
    member_count: int
    role: Role | None = None

class MembershipPublic(BaseModel):
    id: UUID
    league_id: UUID
    user_id: UUID
    role: Role
    joined_at: datetime
