from __future__ import annotations
from datetime import date
from typing import Annotated, Literal, Union
from pydantic import BaseModel, Field


class Verified(BaseModel):
    """The verifier read the screenshot. `verified` is False when the numbers disagree."""
    kind: Literal["verified"] = "verified"
    verified: bool
    extracted_steps: int | None = None
    extracted_date: date | None = None
    difference: int | None = None
    tolerance_used: float | None = None
    notes: str | None = None


class RateLimited(BaseModel):
    kind: Literal["rate_limited"] = "rate_limited"
    retry_after: int | None = None


class Failed(BaseModel):
    kind: Literal["failed"] = "failed"
    code: str = "verification_failed"
    message: str
    status: int = 502


VerificationResult = Annotated[Union[Verified, RateLimited, Failed], Field(discriminator="kind")]
