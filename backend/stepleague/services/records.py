from __future__ import annotations
from datetime import date
from typing import Iterable
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from stepleague.models.submission import Submission
from stepleague.models.user import UserRecord
from stepleague.services.periods import calculate_streak, longest_streak
from stepleague.services.scoring import UserRecordSnapshot


async def refresh_user_record(session: AsyncSession, user_id, today: date | None = None) -> UserRecord:
    """
    Recompute a user's streak and lifetime totals from their submissions.

    Steps count once per calendar day across all leagues (the larger entry wins).
    The caller commits.
    """
    per_day = (
        await session.execute(
            select(Submission.for_date, func.max(Submission.steps))
            .where(Submission.user_id == user_id)
            .group_by(Submission.for_date)
        )
    ).all()
    dates = [d for d, _ in per_day]

    rec = await session.get(UserRecord, user_id)
    if rec is None:
        rec = UserRecord(user_id=user_id)
        session.add(rec)
    rec.total_steps_lifetime = int(sum(steps or 0 for _, steps in per_day))
    rec.current_streak = calculate_streak(dates, today=today)
    rec.longest_streak = max(rec.longest_streak or 0, longest_streak(dates))
    return rec


async def get_user_records(session: AsyncSession, user_ids: Iterable) -> dict[str, UserRecordSnapshot]:
    ids = list(user_ids)
    if not ids:
        return {}
    rows = (await session.execute(select(UserRecord).where(UserRecord.user_id.in_(ids)))).scalars().all()
    return {
        str(r.user_id): UserRecordSnapshot(current_streak=r.current_streak, lifetime_steps=int(r.total_steps_lifetime))
        for r in rows
    }
