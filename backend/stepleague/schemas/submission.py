from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, model_validator
from uuid import UUID
from datetime import date, datetime
from stepleague.schemas.verification import Verified


class SubmissionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    league_id: UUID
    for_date: date = Field(alias="date")
    steps: int = Field(gt=0)
    partial: bool = False
    proof_path: str | None = Field(default=None, min_length=3)
    flagged: bool = False
    flag_reason: str | None = None
    overwrite: bool = False

    @model_validator(mode="after")
    def reason_when_flagged(self):
        if self.flagged and not (self.flag_reason or "").strip():
            raise ValueError("flag_reason is required when flagged")
        return self


class SubmissionPublic(BaseModel):
    id: UUID
    league_id: UUID
    user_id: UUID
    for_date: date
    steps: int
    partial: bool
    verified: bool | None
    tolerance_used: float | None = None
    extracted_steps: int | None = None
    verification_notes: str | None = None
    flagged: bool = False
    # 🔒 proof served via proxy endpoint, never the storage key
    has_proof: bool = False
    created_at: datetime


class VerificationErrorPublic(BaseModel):
    error: str
    message: str
    retry_after: int | None = None
    should_retry: bool = False


class SubmissionCreated(BaseModel):
    submission: SubmissionPublic
    verification: Verified | None = None
    verification_error: VerificationErrorPublic | None = None


class SubmissionList(BaseModel):
    submissions: list[SubmissionPublic]
    total: int


class VerifyRequest(BaseModel):
    submission_id: UUID
    league_id: UUID
    steps: int = Field(gt=0)
    for_date: date
    proof_path: str = Field(min_length=3)


class VerifyResponse(BaseModel):
    verified: bool
    submission: SubmissionPublic
    verification: Verified


class ReanalyzeRequest(BaseModel):
    league_id: UUID
    submission_ids: list[UUID] | None = Field(default=None, description="defaults to every unverified submission with a proof")


class ReanalyzeResponse(BaseModel):
    queued: int


class SignUploadRequest(BaseModel):
    content_type: str


class SignUploadResponse(BaseModel):
    upload_url: str
    path: str
