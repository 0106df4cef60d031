from __future__ import annotations
import uuid
from datetime import date
from typing import Iterable
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from stepleague.models.submission import Submission
from stepleague.services.periods import DateRange


class SubmissionConflict(Exception):
    """A submission already exists for this (user, league, date) and overwrite was not requested."""


class SubmissionStore:
    """Data access for step submissions; the database unique constraint is the final arbiter."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, submission_id) -> Submission | None:
        return await self.session.get(Submission, submission_id)

    async def find(self, user_id, league_id, for_date: date) -> Submission | None:
        return await self.session.scalar(
            select(Submission).where(
                Submission.user_id == user_id,
                Submission.league_id == league_id,
                Submission.for_date == for_date,
            )
        )

    async def create(
        self,
        *,
        league_id: uuid.UUID,
        user_id: uuid.UUID,
        for_date: date,
        steps: int,
        partial: bool = False,
        proof_path: str | None = None,
        flagged: bool = False,
        flag_reason: str | None = None,
        overwrite: bool = False,
    ) -> tuple[Submission, bool]:
        """
        Insert the day's submission, or replace it when `overwrite` is set.
        Returns (submission, replaced). Raises SubmissionConflict otherwise.
        """
        existing = await self.find(user_id, league_id, for_date)
        if existing is not None and not overwrite:
            raise SubmissionConflict()

        if existing is not None:
            sub = existing
            replaced = True
        else:
            sub = Submission(league_id=league_id, user_id=user_id, for_date=for_date)
            self.session.add(sub)
            replaced = False

        sub.steps = steps
        sub.partial = partial
        sub.proof_path = proof_path
        sub.flagged = flagged
        sub.flag_reason = flag_reason if flagged else None
        # new numbers invalidate any earlier verdict
        sub.verified = None
        sub.extracted_steps = None
        sub.extracted_date = None
        sub.tolerance_used = None
        sub.verification_notes = None

        try:
            await self.session.commit()
        except IntegrityError:
            # another request won the race for this date
            await self.session.rollback()
            raise SubmissionConflict()
        await self.session.refresh(sub)
        return sub, replaced

    async def query(
        self,
        league_id=None,
        rng: DateRange | None = None,
        user_ids: Iterable | None = None,
        verified: str = "all",
    ) -> list[Submission]:
        q = select(Submission)
        if league_id is not None:
            q = q.where(Submission.league_id == league_id)
        if user_ids is not None:
            q = q.where(Submission.user_id.in_(list(user_ids)))
        if rng is not None:
            q = q.where(Submission.for_date >= rng.start, Submission.for_date <= rng.end)
        if verified == "verified":
            q = q.where(Submission.verified.is_(True))
        elif verified == "unverified":
            q = q.where(Submission.verified.isnot(True))
        q = q.order_by(Submission.for_date.desc(), Submission.created_at.desc())
        return list((await self.session.execute(q)).scalars().all())

    async def dates_by_user(self, league_id) -> dict[str, list[date]]:
        rows = (
            await self.session.execute(
                select(Submission.user_id, Submission.for_date).where(Submission.league_id == league_id)
            )
        ).all()
        out: dict[str, list[date]] = {}
        for uid, d in rows:
            out.setdefault(str(uid), []).append(d)
        return out

    async def commit(self) -> None:
        await self.session.commit()
