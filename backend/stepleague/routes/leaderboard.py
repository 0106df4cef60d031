from __future__ import annotations
from datetime import date
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from stepleague.db import get_session
from stepleague.auth_deps import get_current_user, load_league_for_member
from stepleague.models.league import Membership
from stepleague.models.user import User
from stepleague.runtime import get_submission_store
from stepleague.schemas.leaderboard import LeaderboardMeta, LeaderboardResponse, LeaderboardRow, PeriodRange
from stepleague.services.periods import (
    DateRange, InvalidDateRange, PRESET_LABELS, clamp_to_counting_start, preset_to_date_range,
)
from stepleague.services.records import get_user_records
from stepleague.services.scoring import LeaderboardScorer
from stepleague.services.submission_store import SubmissionStore

router = APIRouter(prefix="/leaderboard", tags=["leaderboard"])

PERIOD_PATTERN = "^(" + "|".join(PRESET_LABELS) + ")$"

def _resolve(preset: str, start: date | None, end: date | None, today: date) -> DateRange | None:
    if preset == "custom":
        if not start or not end:
            raise HTTPException(status_code=422, detail="start and end dates are required for a custom period")
        try:
            return DateRange(start, end).validate()
        except InvalidDateRange as e:
            raise HTTPException(status_code=422, detail=str(e))
    return preset_to_date_range(preset, today)

def _period(rng: DateRange | None) -> PeriodRange | None:
    return PeriodRange(start=rng.start, end=rng.end) if rng else None

@router.get("", response_model=LeaderboardResponse)
async def leaderboard(
    league_id: UUID,
    period: str = Query(default="this_week", pattern=PERIOD_PATTERN),
    period_b: str | None = Query(default=None, pattern=PERIOD_PATTERN),
    start_date: date | None = None,
    end_date: date | None = None,
    start_date_b: date | None = None,
    end_date_b: date | None = None,
    verified: str = Query(default="all", pattern="^(all|verified|unverified)$"),
    sort_by: str = Query(default="steps", pattern="^(steps|improvement|average|streak)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
    store: SubmissionStore = Depends(get_submission_store),
    user=Depends(get_current_user),
):
    today = date.today()
    rng_a = _resolve(period, start_date, end_date, today)
    rng_b = _resolve(period_b, start_date_b, end_date_b, today) if period_b else None

    league, _ = await load_league_for_member(session, league_id, user)
    counting_start = league.counting_start_date

    rng_a = clamp_to_counting_start(rng_a, counting_start)
    rng_b = clamp_to_counting_start(rng_b, counting_start)
    if period == "all_time" and counting_start:
        rng_a = DateRange(counting_start, today) if counting_start <= today else None

    # all_time without a counting start is the only unbounded query
    fetch_a = rng_a is not None or (period == "all_time" and not counting_start)
    rows_a = await store.query(league_id=league.id, rng=rng_a, verified=verified) if fetch_a else []
    rows_b = await store.query(league_id=league.id, rng=rng_b, verified=verified) if rng_b else None

    user_ids = {r.user_id for r in rows_a}
    records = await get_user_records(session, user_ids)
    history = await store.dates_by_user(league.id)

    scorer = LeaderboardScorer(today=today)
    ranked = scorer.score(rows_a, rows_b, records=records, history=history, sort_by=sort_by)

    members = (
        await session.execute(
            select(User.id, User.display_name, User.nickname, User.username)
            .join(Membership, Membership.user_id == User.id)
            .where(Membership.league_id == league.id)
        )
    ).all()
    names = {str(uid): (display or username, nick) for uid, display, nick, username in members}
    total_days = rng_a.days if rng_a else 0

    rows: list[LeaderboardRow] = []
    for e in ranked[offset:offset + limit]:
        display_name, nickname = names.get(e.user_id, (None, None))
        rows.append(LeaderboardRow(
            rank=e.rank,
            user_id=e.user_id,
            display_name=display_name,
            nickname=nickname,
            total_steps=e.period_a.total_steps,
            days_submitted=e.period_a.days_submitted,
            total_days_in_period=total_days,
            average_per_day=e.period_a.average_per_day,
            verified_days=e.period_a.verified_days,
            unverified_days=e.period_a.unverified_days,
            streak=e.period_streak,
            period_b_steps=e.period_b.total_steps if e.period_b else None,
            period_b_days=e.period_b.days_submitted if e.period_b else None,
            improvement_pct=round(e.improvement_pct, 1) if e.improvement_pct is not None else None,
            common_days_steps_a=e.common_days_steps_a,
            common_days_steps_b=e.common_days_steps_b,
            badges=e.badges,
        ))

    return LeaderboardResponse(
        leaderboard=rows,
        meta=LeaderboardMeta(
            total_members=len(ranked),
            team_total_steps=sum(e.total_steps for e in ranked),
            total_days_in_period=total_days,
            period_a=_period(rng_a),
            period_b=_period(rng_b),
            limit=limit,
            offset=offset,
        ),
    )
