"""
Client-side driver for a single step submission.

Runs upload -> save -> AI verification strictly in sequence. Verification can
be rate limited by the upstream service; the orchestrator then backs off with
a capped exponential delay and asks the user before every wait. A saved
submission is never rolled back: when verification cannot finish the entry
stays recorded but unverified.
"""
from __future__ import annotations
import asyncio
import enum
import math
import time
from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable, Literal
import httpx
import structlog
from stepleague.client.api import ApiClient, ApiError, parse_api_message
from stepleague.schemas.verification import Verified
from stepleague.services.media import compress_image, sniff_mime

log = structlog.get_logger()

MAX_RETRY_ATTEMPTS = 5
BASE_RETRY_SECONDS = 5
MAX_BACKOFF_SECONDS = 120
INITIAL_VERIFY_DELAY_SECONDS = 3
DEFAULT_RATE_LIMIT_WAIT_SECONDS = 60
POLL_SECONDS = 1.0

MAX_UPLOAD_BYTES = 20 * 1024 * 1024
COMPRESS_THRESHOLD_BYTES = 2 * 1024 * 1024
COMPRESS_MAX_DIMENSION = 1920

CONFLICT_MESSAGE = "A submission already exists for this date. Set overwrite to update it."
QUOTA_MESSAGE = "Verification quota exhausted. Your submission was saved but verification is pending."
SKIPPED_MESSAGE = "Submission saved. Verification skipped, your steps are recorded but not AI-verified."


class State(str, enum.Enum):
    IDLE = "idle"
    SUBMITTING = "submitting"
    UPLOADING = "uploading"
    SAVED = "saved"
    VERIFICATION_PENDING = "verification_pending"
    VERIFIED = "verified"
    VERIFICATION_FAILED = "verification_failed"
    SKIPPED = "skipped"
    QUOTA_EXHAUSTED = "quota_exhausted"


TERMINAL_STATES = frozenset(
    {State.SAVED, State.VERIFIED, State.VERIFICATION_FAILED, State.SKIPPED, State.QUOTA_EXHAUSTED}
)


class SubmissionValidationError(ValueError):
    """Rejected locally; no request was sent."""


class UploadError(Exception):
    """The proof upload failed, so nothing was saved."""


@dataclass
class PendingVerification:
    submission_id: str
    league_id: str
    steps: int
    for_date: date
    proof_path: str
    retry_at: float
    attempts: int = 0
    awaiting_confirmation: bool = False


def compute_backoff(attempts: int) -> int:
    return min(BASE_RETRY_SECONDS * 2 ** attempts, MAX_BACKOFF_SECONDS)


def next_action(pending: PendingVerification, now: float) -> tuple[Literal["wait", "verify"], float]:
    """Either sleep (never longer than one poll tick) or call the verifier now."""
    wait = pending.retry_at - now
    if wait > 0:
        return "wait", min(wait, POLL_SECONDS)
    return "verify", 0.0


def format_wait_time(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    minutes, rest = divmod(seconds, 60)
    return f"{minutes}m" if rest == 0 else f"{minutes}m {rest}s"


class SubmissionRetryOrchestrator:
    """
    One instance per submission form. Its PendingVerification is never shared.

    `on_wait_prompt(seconds, attempts)` is called whenever a wait needs the
    user's go-ahead; answer with handle_confirm_wait() or handle_cancel_wait(),
    from the callback or from another task. `on_complete` fires at most once
    per submit, when the entry is saved and nothing further is pending.
    """

    def __init__(
        self,
        api: ApiClient,
        league_id: str,
        *,
        require_photo: bool = False,
        on_complete: Callable[[], None] | None = None,
        on_wait_prompt: Callable[[int, int], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_upload_bytes: int = MAX_UPLOAD_BYTES,
        compress_threshold_bytes: int = COMPRESS_THRESHOLD_BYTES,
    ):
        self.api = api
        self.league_id = str(league_id)
        self.require_photo = require_photo
        self.on_complete = on_complete
        self.on_wait_prompt = on_wait_prompt
        self.clock = clock
        self.sleep = sleep
        self.max_upload_bytes = max_upload_bytes
        self.compress_threshold_bytes = compress_threshold_bytes

        self.state = State.IDLE
        self.pending: PendingVerification | None = None
        self.overwrite = False
        self.conflict = False
        self.error: str | None = None
        self.status: str | None = None
        self.submission: dict | None = None
        self.verification: Verified | None = None
        self.verify_calls = 0
        self._completed = False
        self._decision = asyncio.Event()

    def set_overwrite(self, value: bool) -> None:
        self.overwrite = value

    @property
    def estimated_wait_seconds(self) -> int:
        if self.pending is None:
            return 0
        return max(0, math.ceil(self.pending.retry_at - self.clock()))

    def _validate(self, steps: int, proof: bytes | None, flagged: bool, flag_reason: str | None) -> None:
        if steps <= 0:
            raise SubmissionValidationError("Steps must be a positive number")
        if self.require_photo and not proof:
            raise SubmissionValidationError("Please attach a screenshot")
        if proof is not None and len(proof) > self.max_upload_bytes:
            raise SubmissionValidationError("File too large")
        if flagged and not (flag_reason or "").strip():
            raise SubmissionValidationError("Please provide a reason for flagging the extraction as incorrect.")

    def _complete(self) -> None:
        if self._completed:
            return
        self._completed = True
        if self.on_complete:
            self.on_complete()

    def _reset(self) -> None:
        self.pending = None
        self.conflict = False
        self.error = None
        self.status = None
        self.submission = None
        self.verification = None
        self.verify_calls = 0
        self._completed = False

    async def _upload(self, proof: bytes, content_type: str | None) -> str:
        self.state = State.UPLOADING
        try:
            if len(proof) > self.compress_threshold_bytes:
                proof, content_type = await asyncio.to_thread(
                    compress_image, proof, self.compress_threshold_bytes, COMPRESS_MAX_DIMENSION
                )
            content_type = content_type or sniff_mime(proof)
            if content_type is None:
                raise UploadError("Unsupported image format")
            signed = await self.api.sign_upload(content_type)
            await self.api.upload_to_signed_url(signed["upload_url"], proof, content_type)
        except (ApiError, httpx.HTTPError, ValueError) as e:
            raise UploadError(f"Upload failed: {e}") from e
        return signed["path"]

    async def submit(
        self,
        *,
        for_date: date,
        steps: int,
        proof: bytes | None = None,
        content_type: str | None = None,
        partial: bool = False,
        flagged: bool = False,
        flag_reason: str | None = None,
    ) -> State:
        """
        Drive one submission to a resting state and return it.

        Raises SubmissionValidationError before any request and UploadError when
        the proof could not be stored. A 409 leaves the orchestrator IDLE with
        `conflict` set; other save errors leave it IDLE with `error` set.
        """
        self._validate(steps, proof, flagged, flag_reason)
        self._reset()
        self.state = State.SUBMITTING

        proof_path = None
        if proof is not None:
            try:
                proof_path = await self._upload(proof, content_type)
            except UploadError as e:
                self.state = State.IDLE
                self.error = str(e)
                log.warning("proof_upload_failed", league_id=self.league_id, error=str(e))
                raise
            self.state = State.SUBMITTING

        payload = {
            "league_id": self.league_id,
            "date": for_date.isoformat(),
            "steps": steps,
            "partial": partial,
            "proof_path": proof_path,
            "flagged": flagged,
            "flag_reason": flag_reason if flagged else None,
            "overwrite": self.overwrite,
        }
        try:
            response = await self.api.create_submission(payload)
        except ApiError as e:
            self.state = State.IDLE
            if e.status == 409:
                self.conflict = True
                self.error = CONFLICT_MESSAGE
            else:
                self.error = parse_api_message(e.payload) or f"Request failed ({e.status})"
            return self.state
        except httpx.HTTPError as e:
            self.state = State.IDLE
            self.error = str(e) or "Unexpected error during submission"
            return self.state

        self.state = State.SAVED
        self.overwrite = False
        self.submission = response.get("submission") or {}
        await self._after_save(response, for_date, steps, proof_path)
        return self.state

    async def _after_save(self, response: dict, for_date: date, steps: int, proof_path: str | None) -> None:
        if response.get("verification"):
            self.verification = Verified.model_validate(response["verification"])
            self.state = State.VERIFIED
            self._complete()
            return

        err = response.get("verification_error")
        if err:
            if err.get("error") == "rate_limited" or err.get("retry_after"):
                wait = err.get("retry_after") or DEFAULT_RATE_LIMIT_WAIT_SECONDS
                self._start_pending(for_date, steps, proof_path, delay=wait, needs_confirmation=True)
                self._prompt(int(wait))
                await self._drive()
            else:
                self.state = State.VERIFICATION_FAILED
                self.error = f"Verification Failed: {err.get('message')}"
            return

        if proof_path:
            self._start_pending(for_date, steps, proof_path, delay=INITIAL_VERIFY_DELAY_SECONDS)
            await self._drive()
            return

        self.status = "Submission saved."
        self._complete()

    def _start_pending(
        self, for_date: date, steps: int, proof_path: str | None, delay: float, needs_confirmation: bool = False
    ) -> None:
        self.pending = PendingVerification(
            submission_id=str(self.submission.get("id")),
            league_id=self.league_id,
            steps=steps,
            for_date=for_date,
            proof_path=proof_path or "",
            retry_at=self.clock() + delay,
            awaiting_confirmation=needs_confirmation,
        )
        self.state = State.VERIFICATION_PENDING

    def _prompt(self, seconds: int) -> None:
        if self.on_wait_prompt and self.pending is not None:
            self.on_wait_prompt(seconds, self.pending.attempts)

    async def _drive(self) -> None:
        while self.state is State.VERIFICATION_PENDING and self.pending is not None:
            if self.pending.awaiting_confirmation:
                self._decision.clear()
                await self._decision.wait()
                continue
            action, delay = next_action(self.pending, self.clock())
            if action == "wait":
                await self.sleep(delay)
                continue
            await self._verify_once()

    async def _verify_once(self) -> None:
        p = self.pending
        self.status = "Verifying submission..."
        self.verify_calls += 1
        try:
            result = await self.api.verify_submission(p.submission_id, p.league_id, p.steps, p.for_date, p.proof_path)
        except ApiError as e:
            if self._superseded(p):
                return
            if e.status == 429:
                self._on_rate_limited()
            else:
                self._fail(parse_api_message(e.payload) or str(e))
            return
        except httpx.HTTPError as e:
            if not self._superseded(p):
                self._fail(str(e) or "Verification failed")
            return

        if self._superseded(p):
            return
        self.pending = None
        if result.get("verification"):
            self.verification = Verified.model_validate(result["verification"])
        self.status = (
            "Verification successful!" if result.get("verified")
            else "Verification completed (steps may differ from screenshot)."
        )
        self.state = State.VERIFIED
        log.info("verification_complete", submission_id=p.submission_id, attempts=p.attempts)
        self._complete()

    def _superseded(self, p: PendingVerification) -> bool:
        # cancelled (or resubmitted) while the verify call was in flight
        if self.state is State.VERIFICATION_PENDING and self.pending is p:
            return False
        log.info("verification_result_dropped", submission_id=p.submission_id, state=self.state.value)
        return True

    def _on_rate_limited(self) -> None:
        p = self.pending
        if p.attempts >= MAX_RETRY_ATTEMPTS:
            self.pending = None
            self.state = State.QUOTA_EXHAUSTED
            self.error = QUOTA_MESSAGE
            self.status = "Submission saved (verification pending due to API limits)."
            log.info("verification_quota_exhausted", submission_id=p.submission_id)
            return
        backoff = compute_backoff(p.attempts)
        self.status = f"Rate limited (attempt {p.attempts + 1}/{MAX_RETRY_ATTEMPTS}). Waiting {backoff}s..."
        p.retry_at = self.clock() + backoff
        p.attempts += 1
        p.awaiting_confirmation = True
        self._prompt(backoff)

    def _fail(self, message: str) -> None:
        self.pending = None
        self.state = State.VERIFICATION_FAILED
        self.error = message

    def handle_confirm_wait(self) -> None:
        if self.pending is None:
            return
        self.pending.awaiting_confirmation = False
        self._decision.set()

    def handle_cancel_wait(self) -> None:
        if self.state is not State.VERIFICATION_PENDING:
            return
        self.pending = None
        self.error = None
        self.state = State.SKIPPED
        self.status = SKIPPED_MESSAGE
        self._decision.set()
        self._complete()
