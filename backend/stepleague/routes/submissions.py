from __future__ import annotations
from datetime import date
from uuid import UUID
from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import JSONResponse
from rq import Queue, Retry
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog
from stepleague.db import get_session
from stepleague.auth_deps import get_current_user, load_league_for_member
from stepleague.models.submission import Submission
from stepleague.runtime import get_queue, get_storage, get_submission_store, get_verifier
from stepleague.schemas.submission import (
    SubmissionCreate, SubmissionCreated, SubmissionPublic, SubmissionList,
    VerificationErrorPublic, VerifyRequest, VerifyResponse, ReanalyzeRequest, ReanalyzeResponse,
)
from stepleague.schemas.verification import Verified, RateLimited
from stepleague.services.periods import DateRange, InvalidDateRange
from stepleague.services.records import refresh_user_record
from stepleague.services.storage import ProofStorage
from stepleague.services.submission_store import SubmissionStore, SubmissionConflict
from stepleague.services.verification import VerificationClient, apply_verification
from stepleague.jobs.verify_submission import verify_submission

router = APIRouter(prefix="/submissions", tags=["submissions"])
log = structlog.get_logger()

CONFLICT_DETAIL = "Submission already exists for this date"

def _to_public(s: Submission) -> SubmissionPublic:
    return SubmissionPublic(
        id=s.id,
        league_id=s.league_id,
        user_id=s.user_id,
        for_date=s.for_date,
        steps=s.steps,
        partial=s.partial,
        verified=s.verified,
        tolerance_used=s.tolerance_used,
        extracted_steps=s.extracted_steps,
        verification_notes=s.verification_notes,
        flagged=s.flagged,
        has_proof=bool(s.proof_path),
        created_at=s.created_at,
    )

def _check_proof_owner(proof_path: str, user) -> None:
    # signed uploads always land under the uploader's prefix
    if not proof_path.startswith(f"{user.id}/"):
        raise HTTPException(status_code=400, detail="Proof does not belong to you")

@router.post("", response_model=SubmissionCreated, status_code=201)
async def create_submission(
    payload: SubmissionCreate,
    response: Response,
    session: AsyncSession = Depends(get_session),
    store: SubmissionStore = Depends(get_submission_store),
    verifier: VerificationClient = Depends(get_verifier),
    user=Depends(get_current_user),
):
    league, membership = await load_league_for_member(session, payload.league_id, user)
    if not membership:
        raise HTTPException(status_code=403, detail="Only members can submit steps")

    requires_proof = league.require_verification_photo or not league.allow_manual_entry
    if requires_proof and not payload.proof_path:
        raise HTTPException(status_code=400, detail="Verification photo is required for this submission.")
    if payload.proof_path:
        _check_proof_owner(payload.proof_path, user)

    if league.backfill_limit is not None:
        age_days = (date.today() - payload.for_date).days
        if age_days > league.backfill_limit:
            plural = "" if league.backfill_limit == 1 else "s"
            raise HTTPException(
                status_code=400,
                detail=f"This league only allows submissions for the past {league.backfill_limit} day{plural}.",
            )

    try:
        sub, replaced = await store.create(
            league_id=league.id,
            user_id=user.id,
            for_date=payload.for_date,
            steps=payload.steps,
            partial=payload.partial,
            proof_path=payload.proof_path,
            flagged=payload.flagged,
            flag_reason=payload.flag_reason,
            overwrite=payload.overwrite,
        )
    except SubmissionConflict:
        raise HTTPException(status_code=409, detail=CONFLICT_DETAIL)

    await refresh_user_record(session, user.id)
    await store.commit()
    log.info("submission_saved", submission_id=str(sub.id), league_id=str(league.id), replaced=replaced)

    out = SubmissionCreated(submission=_to_public(sub))
    if not sub.proof_path:
        return out

    result = await verifier.verify(str(sub.id), sub.steps, sub.for_date, sub.proof_path)
    if isinstance(result, Verified):
        apply_verification(sub, result)
        await store.commit()
        out.submission = _to_public(sub)
        out.verification = result
        return out

    # saved, but verification has to be retried by the client
    response.status_code = 202
    if isinstance(result, RateLimited):
        out.verification_error = VerificationErrorPublic(
            error="rate_limited",
            message="AI service verification limit reached",
            retry_after=result.retry_after,
            should_retry=True,
        )
    else:
        out.verification_error = VerificationErrorPublic(error=result.code, message=result.message)
    return out

@router.get("", response_model=SubmissionList)
async def list_submissions(
    response: Response,
    league_id: UUID = Query(...),
    user_id: UUID | None = Query(default=None),
    date_from: date | None = Query(default=None, alias="from"),
    date_to: date | None = Query(default=None, alias="to"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    order_by: str = Query(default="for_date", pattern="^(for_date|created_at)$"),
    session: AsyncSession = Depends(get_session),
    user=Depends(get_current_user),
):
    league, _ = await load_league_for_member(session, league_id, user)

    q = select(Submission).where(Submission.league_id == league.id)
    if user_id:
        q = q.where(Submission.user_id == user_id)
    if date_from:
        q = q.where(Submission.for_date >= date_from)
    if date_to:
        q = q.where(Submission.for_date <= date_to)
    if date_from and date_to:
        try:
            DateRange(date_from, date_to).validate()
        except InvalidDateRange as e:
            raise HTTPException(status_code=422, detail=str(e))

    total = await session.scalar(select(func.count()).select_from(q.subquery()))
    primary, secondary = (
        (Submission.created_at, Submission.for_date) if order_by == "created_at"
        else (Submission.for_date, Submission.created_at)
    )
    rows = (await session.execute(q.order_by(primary.desc(), secondary.desc()).offset(offset).limit(limit))).scalars().all()

    end = offset + len(rows) - 1 if rows else offset
    response.headers["Content-Range"] = f"items {offset}-{end}/{total or 0}"
    response.headers["X-Total-Count"] = str(total or 0)
    return SubmissionList(submissions=[_to_public(s) for s in rows], total=int(total or 0))

@router.post("/verify", response_model=VerifyResponse)
async def verify(
    payload: VerifyRequest,
    session: AsyncSession = Depends(get_session),
    store: SubmissionStore = Depends(get_submission_store),
    verifier: VerificationClient = Depends(get_verifier),
    user=Depends(get_current_user),
):
    """Retry AI verification for one of the caller's own submissions."""
    await load_league_for_member(session, payload.league_id, user)
    sub = await store.get(payload.submission_id)
    if not sub or sub.league_id != payload.league_id:
        raise HTTPException(status_code=404, detail="Submission not found")
    if sub.user_id != user.id:
        raise HTTPException(status_code=403, detail="You can only verify your own submissions")
    if not sub.proof_path:
        raise HTTPException(status_code=400, detail="No proof associated with this submission")

    # the verdict is stored on this row, so check the row's own numbers
    result = await verifier.verify(str(sub.id), sub.steps, sub.for_date, sub.proof_path)
    if isinstance(result, RateLimited):
        retry_after = result.retry_after or 10
        return JSONResponse(
            status_code=429,
            content={"detail": "rate_limited", "error": "rate_limited", "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )
    if not isinstance(result, Verified):
        raise HTTPException(status_code=result.status, detail=result.message)

    apply_verification(sub, result)
    await store.commit()
    return VerifyResponse(verified=result.verified, submission=_to_public(sub), verification=result)

@router.get("/{submission_id}/proof")
async def get_proof(
    submission_id: UUID,
    session: AsyncSession = Depends(get_session),
    store: SubmissionStore = Depends(get_submission_store),
    storage: ProofStorage = Depends(get_storage),
    user=Depends(get_current_user),
):
    """Stream the proof screenshot to league members."""
    sub = await store.get(submission_id)
    if not sub:
        raise HTTPException(status_code=404, detail="Submission not found")
    await load_league_for_member(session, sub.league_id, user)
    if not sub.proof_path:
        raise HTTPException(status_code=404, detail="No proof associated with this submission")
    try:
        data, content_type = storage.get_bytes(sub.proof_path)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail="Proof file not found in storage")
    return Response(content=data, media_type=content_type)

@router.post("/reanalyze", response_model=ReanalyzeResponse, status_code=202)
async def reanalyze(
    payload: ReanalyzeRequest,
    session: AsyncSession = Depends(get_session),
    queue: Queue = Depends(get_queue),
    user=Depends(get_current_user),
):
    """Queue background re-verification of unverified proofs in a league (admins only)."""
    _, membership = await load_league_for_member(session, payload.league_id, user)
    if not user.is_superadmin and (not membership or membership.role not in ("owner", "admin")):
        raise HTTPException(status_code=403, detail="League admin required")

    q = select(Submission.id).where(
        Submission.league_id == payload.league_id,
        Submission.proof_path.isnot(None),
        Submission.verified.isnot(True),
    )
    if payload.submission_ids:
        q = q.where(Submission.id.in_(payload.submission_ids))
    ids = (await session.execute(q)).scalars().all()

    for sid in ids:
        queue.enqueue(verify_submission, str(sid), job_timeout=120, retry=Retry(max=3, interval=[60, 120, 240]))
    log.info("reanalyze_queued", league_id=str(payload.league_id), count=len(ids))
    return ReanalyzeResponse(queued=len(ids))
