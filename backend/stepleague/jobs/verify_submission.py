from __future__ import annotations
import asyncio
import structlog
from stepleague.config import settings
from stepleague.db import SessionLocal, engine
from stepleague.logging_setup import configure_logging
from stepleague.models.submission import Submission
from stepleague.schemas.verification import Verified, RateLimited
from stepleague.services.storage import ProofStorage
from stepleague.services.verification import VerificationClient, apply_verification

configure_logging()
log = structlog.get_logger()

async def _run(submission_id: str) -> str:
    storage = ProofStorage(settings)
    verifier = VerificationClient(settings, storage)
    try:
        async with SessionLocal() as session:
            s = await session.get(Submission, submission_id)
            if not s or not s.proof_path:
                return "skipped"
            result = await verifier.verify(str(s.id), s.steps, s.for_date, s.proof_path)
            if isinstance(result, Verified):
                apply_verification(s, result)
                await session.commit()
                return "verified" if result.verified else "mismatch"
            if isinstance(result, RateLimited):
                # Let RQ's retry policy reschedule; the worker has no user to ask
                raise RuntimeError(f"verification rate limited, retry after {result.retry_after}s")
            s.verification_notes = f"{result.code}: {result.message}"
            await session.commit()
            return "failed"
    finally:
        await verifier.aclose()
        # pooled connections belong to this asyncio.run loop
        await engine.dispose()

def verify_submission(submission_id: str):
    # RQ entry point (sync); run the async coroutine
    outcome = asyncio.run(_run(submission_id))
    log.info("reanalyze_done", submission_id=submission_id, outcome=outcome)
    return outcome
