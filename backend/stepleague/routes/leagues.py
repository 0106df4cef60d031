from __future__ import annotations
from datetime import date
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog
from stepleague.db import get_session
from stepleague.auth_deps import get_current_user, load_league_for_member
from stepleague.models.league import League, Membership
from stepleague.models.user import User
from stepleague.runtime import get_submission_store
from stepleague.schemas.league import LeagueCreate, LeaguePublic, MembershipPublic
from stepleague.schemas.leaderboard import BreakdownResponse, MemberBreakdownPublic, DayDataPublic
from stepleague.services.breakdown import build_breakdown
from stepleague.services.invite_code import generate_invite_code
from stepleague.services.periods import DateRange, InvalidDateRange, month_range
from stepleague.services.submission_store import SubmissionStore

router = APIRouter(prefix="/leagues", tags=["leagues"])
log = structlog.get_logger()

async def hydrate_public(session: AsyncSession, league: League, user_id) -> LeaguePublic:
    member_count = await session.scalar(
        select(func.count()).select_from(Membership).where(Membership.league_id == league.id)
    )
    role = await session.scalar(
        select(Membership.role).where(Membership.league_id == league.id, Membership.user_id == user_id)
    )
    return LeaguePublic(
        id=league.id, owner_id=league.owner_id, name=league.name, invite_code=league.invite_code,
        counting_start_date=league.counting_start_date, backfill_limit=league.backfill_limit,
        require_verification_photo=league.require_verification_photo,
        allow_manual_entry=league.allow_manual_entry,
        created_at=league.created_at,
        member_count=int(member_count or 0),
        role=role,
    )

@router.post("", response_model=LeaguePublic, status_code=201)
async def create_league(payload: LeagueCreate, session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    # Generate a unique invite code (retry on collision)
    for _ in range(5):
        league = League(
            owner_id=user.id,
            name=payload.name,
            invite_code=generate_invite_code(),
            counting_start_date=payload.counting_start_date,
            backfill_limit=payload.backfill_limit,
            require_verification_photo=payload.require_verification_photo,
            allow_manual_entry=payload.allow_manual_entry,
        )
        session.add(league)
        try:
            await session.flush()
            # Owner becomes member #1
            session.add(Membership(league_id=league.id, user_id=user.id, role="owner"))
            await session.commit()
        except IntegrityError:
            await session.rollback()
            continue
        await session.refresh(league)
        log.info("league_created", league_id=str(league.id), owner_id=str(user.id))
        return await hydrate_public(session, league, user.id)
    raise HTTPException(status_code=500, detail="Failed to generate unique invite code")

@router.get("/mine", response_model=list[LeaguePublic])
async def list_my_leagues(session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    q = (
        select(League)
        .join(Membership, Membership.league_id == League.id)
        .where(Membership.user_id == user.id)
        .order_by(League.created_at.desc())
    )
    rows = (await session.execute(q)).scalars().all()
    return [await hydrate_public(session, lg, user.id) for lg in rows]

@router.get("/{league_id}", response_model=LeaguePublic)
async def get_league(league_id: UUID, session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    league, _ = await load_league_for_member(session, league_id, user)
    return await hydrate_public(session, league, user.id)

@router.post("/{invite_code}/join", response_model=MembershipPublic, status_code=201)
async def join_by_code(invite_code: str, session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    league = await session.scalar(select(League).where(League.invite_code == invite_code.upper()))
    if not league:
        raise HTTPException(status_code=404, detail="Invalid invite code")
    m = Membership(league_id=league.id, user_id=user.id, role="member")
    session.add(m)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise HTTPException(status_code=409, detail="Already a member of this league")
    await session.refresh(m)
    return MembershipPublic(id=m.id, league_id=m.league_id, user_id=m.user_id, role=m.role, joined_at=m.joined_at)

@router.get("/{league_id}/daily-breakdown", response_model=BreakdownResponse)
async def daily_breakdown(
    league_id: UUID,
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    group_by: str = Query(default="day", pattern="^(day|3days|5days|week|month)$"),
    sort_by: str = Query(default="total", pattern="^(total|average|consistency|name)$"),
    session: AsyncSession = Depends(get_session),
    store: SubmissionStore = Depends(get_submission_store),
    user=Depends(get_current_user),
):
    default = month_range(date.today())
    rng = DateRange(start_date or default.start, end_date or default.end)
    try:
        rng.validate()
    except InvalidDateRange as e:
        raise HTTPException(status_code=422, detail=str(e))

    league, _ = await load_league_for_member(session, league_id, user)

    members = (
        await session.execute(
            select(User.id, User.nickname, User.display_name)
            .join(Membership, Membership.user_id == User.id)
            .where(Membership.league_id == league.id)
        )
    ).all()
    rows = await store.query(league_id=league.id, rng=rng)

    dates, breakdown = build_breakdown(rng, members, rows, group_by=group_by, sort_by=sort_by)
    return BreakdownResponse(
        start_date=rng.start,
        end_date=rng.end,
        total_days=rng.days,
        group_by=group_by,
        dates=dates,
        members=[
            MemberBreakdownPublic(
                user_id=m.user_id,
                nickname=m.nickname,
                display_name=m.display_name,
                total_steps=m.total_steps,
                days_submitted=m.days_submitted,
                avg_per_day=m.avg_per_day,
                consistency_pct=m.consistency_pct,
                days={k: (DayDataPublic(steps=v.steps, verified=v.verified) if v else None) for k, v in m.days.items()},
            )
            for m in breakdown
        ],
    )
