from __future__ import annotations
from types import SimpleNamespace
import pytest
from stepleague.jobs import verify_submission as job
from stepleague.schemas.verification import Verified, RateLimited, Failed
from conftest import make_league, make_submission, make_user


class FakeSession:
    def __init__(self, sub):
        self.sub = sub
        self.commits = 0

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def get(self, model, ident):
        return self.sub if self.sub and str(self.sub.id) == str(ident) else None

    async def commit(self):
        self.commits += 1


class FakeVerifier:
    result = None
    closed = 0

    def __init__(self, settings, storage):
        pass

    async def verify(self, submission_id, steps, for_date, proof_path):
        return FakeVerifier.result

    async def aclose(self):
        FakeVerifier.closed += 1


class FakeEngine:
    disposed = 0

    async def dispose(self):
        FakeEngine.disposed += 1


@pytest.fixture
def wired(monkeypatch):
    def wire(sub, result):
        session = FakeSession(sub)
        FakeVerifier.result = result
        monkeypatch.setattr(job, "SessionLocal", lambda: session)
        monkeypatch.setattr(job, "VerificationClient", FakeVerifier)
        monkeypatch.setattr(job, "ProofStorage", lambda settings: SimpleNamespace())
        monkeypatch.setattr(job, "engine", FakeEngine())
        return session
    return wire


def _sub(**kw):
    user = make_user()
    return make_submission(make_league(), user, proof_path=f"{user.id}/a.png", **kw)


def test_verified_result_is_stored(wired):
    sub = _sub()
    session = wired(sub, Verified(verified=True, extracted_steps=8000))
    assert job.verify_submission(str(sub.id)) == "verified"
    assert sub.verified is True
    assert session.commits == 1


def test_failure_is_noted(wired):
    sub = _sub()
    wired(sub, Failed(code="bad_response", message="unreadable"))
    assert job.verify_submission(str(sub.id)) == "failed"
    assert sub.verification_notes == "bad_response: unreadable"


def test_rate_limit_raises_for_rq_retry(wired):
    sub = _sub()
    wired(sub, RateLimited(retry_after=30))
    closed = FakeVerifier.closed
    with pytest.raises(RuntimeError):
        job.verify_submission(str(sub.id))
    assert FakeVerifier.closed == closed + 1


def test_missing_submission_skipped(wired):
    wired(None, None)
    assert job.verify_submission("00000000-0000-0000-0000-000000000000") == "skipped"
