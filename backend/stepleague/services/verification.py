from __future__ import annotations
import asyncio
import base64
from datetime import date
import httpx
import structlog
from minio.error import S3Error
from pydantic import ValidationError
from urllib3.exceptions import HTTPError as StorageTransportError
from stepleague.config import Settings
from stepleague.models.submission import Submission
from stepleague.schemas.verification import Verified, RateLimited, Failed
from stepleague.services.storage import ProofStorage

log = structlog.get_logger()

RATE_LIMIT_MARKERS = ("429", "RESOURCE_EXHAUSTED")


def _retry_after(response: httpx.Response, body: dict, default: int) -> int:
    raw = body.get("retry_after") if isinstance(body, dict) else None
    if raw is None:
        raw = response.headers.get("Retry-After")
    try:
        return int(raw) if raw is not None else default
    except (TypeError, ValueError):
        return default


class VerificationClient:
    """
    Calls the external AI screenshot verifier.

    The verifier is opaque and may be rate limited; every outcome comes back as
    a Verified | RateLimited | Failed value instead of an exception so callers can
    branch on it.
    """

    def __init__(self, settings: Settings, storage: ProofStorage, http: httpx.AsyncClient | None = None):
        self.url = settings.verification_url
        self.default_retry_after = settings.verification_default_retry_after
        self.storage = storage
        headers = {"Authorization": f"Bearer {settings.verification_api_key}"} if settings.verification_api_key else {}
        self._http = http or httpx.AsyncClient(timeout=settings.verification_timeout_seconds, headers=headers)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def verify(self, submission_id: str, steps: int, for_date: date, proof_path: str) -> Verified | RateLimited | Failed:
        try:
            data, content_type = await asyncio.to_thread(self.storage.get_bytes, proof_path)
        except FileNotFoundError:
            return Failed(code="proof_missing", message="Proof image not found", status=404)
        except (S3Error, StorageTransportError) as e:
            log.warning("verification_storage_error", submission_id=submission_id, error=str(e))
            return Failed(code="storage_error", message="Proof image could not be read from storage", status=503)

        payload = {
            "submission_id": submission_id,
            "steps_claimed": steps,
            "for_date": for_date.isoformat(),
            "mime_type": content_type,
            "image_base64": base64.b64encode(data).decode("ascii"),
        }
        try:
            response = await self._http.post(self.url, json=payload)
        except httpx.HTTPError as e:
            log.warning("verification_transport_error", submission_id=submission_id, error=str(e))
            if any(m in str(e) for m in RATE_LIMIT_MARKERS):
                return RateLimited(retry_after=self.default_retry_after)
            return Failed(code="internal_error", message=str(e) or "Verification service unreachable")

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code == 429:
            retry_after = _retry_after(response, body, self.default_retry_after)
            log.info("verification_rate_limited", submission_id=submission_id, retry_after=retry_after)
            return RateLimited(retry_after=retry_after)

        if not response.is_success:
            message = body.get("message") or body.get("error") or response.text or "Verification failed"
            log.warning("verification_failed", submission_id=submission_id, status=response.status_code)
            return Failed(code=body.get("code") or "verification_failed", message=message, status=response.status_code)

        try:
            result = Verified(
                verified=bool(body.get("verified")),
                extracted_steps=body.get("extracted_steps"),
                extracted_date=body.get("extracted_date"),
                difference=body.get("difference"),
                tolerance_used=body.get("tolerance_used"),
                notes=body.get("notes"),
            )
        except ValidationError as e:
            log.warning("verification_bad_response", submission_id=submission_id, error=str(e))
            return Failed(code="bad_response", message="Verification service returned an unreadable result")
        log.info("verification_done", submission_id=submission_id, verified=result.verified)
        return result


def apply_verification(sub: Submission, result: Verified) -> None:
    sub.verified = result.verified
    sub.extracted_steps = result.extracted_steps
    sub.extracted_date = result.extracted_date
    sub.tolerance_used = result.tolerance_used
    sub.verification_notes = result.notes
