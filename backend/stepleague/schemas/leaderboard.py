from __future__ import annotations
from pydantic import BaseModel
from datetime import date


class LeaderboardRow(BaseModel):
    rank: int
    user_id: str
    display_name: str | None
    nickname: str | None
    total_steps: int
    days_submitted: int
    total_days_in_period: int
    average_per_day: int
    verified_days: int
    unverified_days: int
    streak: int
    period_b_steps: int | None = None
    period_b_days: int | None = None
    improvement_pct: float | None = None
    common_days_steps_a: int | None = None
    common_days_steps_b: int | None = None
    badges: list[str]


class PeriodRange(BaseModel):
    start: date
    end: date


class LeaderboardMeta(BaseModel):
    total_members: int
    team_total_steps: int
    total_days_in_period: int
    period_a: PeriodRange | None
    period_b: PeriodRange | None
    limit: int
    offset: int


class LeaderboardResponse(BaseModel):
    leaderboard: list[LeaderboardRow]
    meta: LeaderboardMeta


class DayDataPublic(BaseModel):
    steps: int
    verified: bool


class MemberBreakdownPublic(BaseModel):
    user_id: str
    nickname: str | None
    display_name: str | None
    total_steps: int
    days_submitted: int
    avg_per_day: int
    consistency_pct: int
    days: dict[str, DayDataPublic | None]


class BreakdownResponse(BaseModel):
    start_date: date
    end_date: date
    total_days: int
    group_by: str
    dates: list[str]
    members: list[MemberBreakdownPublic]
