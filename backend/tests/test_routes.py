from __future__ import annotations
import uuid
from datetime import date, timedelta
from types import SimpleNamespace
import httpx
from httpx import AsyncClient
import pytest
from stepleague.main import app
from stepleague.schemas.verification import Verified, RateLimited, Failed
from stepleague.services.scoring import ScoredRow
from stepleague.services.submission_store import SubmissionConflict
from conftest import FakeSession, make_league, make_submission


class FakeStore:
    def __init__(self, sub=None, conflict=False):
        self.sub = sub
        self.conflict = conflict
        self.created = []
        self.commits = 0

    async def create(self, **kw):
        self.created.append(kw)
        if self.conflict:
            raise SubmissionConflict()
        return self.sub, False

    async def get(self, submission_id):
        return self.sub if self.sub and str(self.sub.id) == str(submission_id) else None

    async def commit(self):
        self.commits += 1

    async def query(self, **kw):
        return []


class FakeStorage:
    def sign_upload(self, owner_id, content_type):
        return f"http://storage/put/{owner_id}", f"{owner_id}/abc.jpg"


class FakeVerifier:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def verify(self, submission_id, steps, for_date, proof_path):
        self.calls.append((submission_id, steps, for_date, proof_path))
        return self.result


def _client():
    return AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.fixture(autouse=True)
def no_record_refresh(monkeypatch):
    async def _noop(session, user_id, today=None):
        return None
    monkeypatch.setattr("stepleague.routes.submissions.refresh_user_record", _noop)


@pytest.mark.asyncio
async def test_sign_upload(override, user):
    override(storage=FakeStorage())
    async with _client() as ac:
        r = await ac.post("/proofs/sign-upload", json={"content_type": "image/png"})
    assert r.status_code == 200
    assert r.json()["path"].startswith(f"{user.id}/")


@pytest.mark.asyncio
async def test_sign_upload_rejects_other_types(override):
    override(storage=FakeStorage())
    async with _client() as ac:
        r = await ac.post("/proofs/sign-upload", json={"content_type": "application/pdf"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_breakdown_rejects_reversed_range(override):
    override(store=FakeStore())
    async with _client() as ac:
        r = await ac.get(
            f"/leagues/{uuid.uuid4()}/daily-breakdown",
            params={"start_date": "2026-01-10", "end_date": "2026-01-01"},
        )
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_leaderboard_custom_period_needs_dates(override):
    override(store=FakeStore())
    async with _client() as ac:
        r = await ac.get("/leaderboard", params={"league_id": str(uuid.uuid4()), "period": "custom"})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_duplicate_submission_is_409(override, user):
    league = make_league()
    store = FakeStore(conflict=True)
    override(session=FakeSession(league=league, membership=object()), store=store)
    body = {"league_id": str(league.id), "date": "2026-01-15", "steps": 8000}
    async with _client() as ac:
        r1 = await ac.post("/submissions", json=body)
        r2 = await ac.post("/submissions", json=body)
    assert r1.status_code == r2.status_code == 409
    assert r1.json()["detail"] == "Submission already exists for this date"
    assert [c["overwrite"] for c in store.created] == [False, False]


@pytest.mark.asyncio
async def test_submission_requires_photo_when_league_does(override):
    league = make_league(require_verification_photo=True)
    store = FakeStore()
    override(session=FakeSession(league=league, membership=object()), store=store)
    async with _client() as ac:
        r = await ac.post("/submissions", json={"league_id": str(league.id), "date": "2026-01-15", "steps": 8000})
    assert r.status_code == 400
    assert store.created == []


@pytest.mark.asyncio
async def test_non_member_cannot_submit(override):
    league = make_league()
    override(session=FakeSession(league=league, membership=None), store=FakeStore())
    async with _client() as ac:
        r = await ac.post("/submissions", json={"league_id": str(league.id), "date": "2026-01-15", "steps": 8000})
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_submission_saved_but_rate_limited_is_202(override, user):
    league = make_league()
    sub = make_submission(league, user, proof_path=f"{user.id}/abc.jpg")
    verifier = FakeVerifier(RateLimited(retry_after=30))
    override(session=FakeSession(league=league, membership=object()), store=FakeStore(sub=sub), verifier=verifier)
    body = {"league_id": str(league.id), "date": "2026-01-15", "steps": 8000, "proof_path": f"{user.id}/abc.jpg"}
    async with _client() as ac:
        r = await ac.post("/submissions", json=body)
    assert r.status_code == 202
    data = r.json()
    assert data["submission"]["has_proof"] is True
    assert data["verification_error"] == {
        "error": "rate_limited", "message": "AI service verification limit reached",
        "retry_after": 30, "should_retry": True,
    }


@pytest.mark.asyncio
async def test_submission_verified_inline(override, user):
    league = make_league()
    sub = make_submission(league, user, proof_path=f"{user.id}/abc.jpg")
    store = FakeStore(sub=sub)
    verifier = FakeVerifier(Verified(verified=True, extracted_steps=8000))
    override(session=FakeSession(league=league, membership=object()), store=store, verifier=verifier)
    body = {"league_id": str(league.id), "date": "2026-01-15", "steps": 8000, "proof_path": f"{user.id}/abc.jpg"}
    async with _client() as ac:
        r = await ac.post("/submissions", json=body)
    assert r.status_code == 201
    assert r.json()["submission"]["verified"] is True
    assert r.json()["verification"]["extracted_steps"] == 8000
    assert store.commits == 2


@pytest.mark.asyncio
async def test_foreign_proof_path_rejected(override):
    league = make_league()
    override(session=FakeSession(league=league, membership=object()), store=FakeStore())
    body = {"league_id": str(league.id), "date": "2026-01-15", "steps": 8000, "proof_path": "someone-else/abc.jpg"}
    async with _client() as ac:
        r = await ac.post("/submissions", json=body)
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_verify_rate_limited_is_429_with_retry_after(override, user):
    league = make_league()
    sub = make_submission(league, user, proof_path=f"{user.id}/abc.jpg")
    override(
        session=FakeSession(league=league, membership=object()),
        store=FakeStore(sub=sub),
        verifier=FakeVerifier(RateLimited(retry_after=15)),
    )
    body = {
        "submission_id": str(sub.id), "league_id": str(league.id), "steps": 8000,
        "for_date": "2026-01-15", "proof_path": f"{user.id}/abc.jpg",
    }
    async with _client() as ac:
        r = await ac.post("/submissions/verify", json=body)
    assert r.status_code == 429
    assert r.headers["Retry-After"] == "15"
    assert r.json()["retry_after"] == 15


@pytest.mark.asyncio
async def test_verify_failure_passes_status_through(override, user):
    league = make_league()
    sub = make_submission(league, user, proof_path=f"{user.id}/abc.jpg")
    override(
        session=FakeSession(league=league, membership=object()),
        store=FakeStore(sub=sub),
        verifier=FakeVerifier(Failed(code="proof_missing", message="Proof image not found", status=404)),
    )
    body = {
        "submission_id": str(sub.id), "league_id": str(league.id), "steps": 8000,
        "for_date": "2026-01-15", "proof_path": f"{user.id}/abc.jpg",
    }
    async with _client() as ac:
        r = await ac.post("/submissions/verify", json=body)
    assert r.status_code == 404
    assert r.json()["detail"] == "Proof image not found"


@pytest.mark.asyncio
async def test_verify_someone_elses_submission_forbidden(override, user):
    league = make_league()
    other = make_submission(league, user, user_id=uuid.uuid4(), proof_path=f"{user.id}/abc.jpg")
    override(session=FakeSession(league=league, membership=object()), store=FakeStore(sub=other), verifier=FakeVerifier(None))
    body = {
        "submission_id": str(other.id), "league_id": str(league.id), "steps": 8000,
        "for_date": "2026-01-15", "proof_path": f"{user.id}/abc.jpg",
    }
    async with _client() as ac:
        r = await ac.post("/submissions/verify", json=body)
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_verify_checks_the_stored_row(override, user):
    league = make_league()
    sub = make_submission(league, user, steps=8000, proof_path=f"{user.id}/abc.jpg")
    store = FakeStore(sub=sub)
    verifier = FakeVerifier(Verified(verified=True, extracted_steps=8000))
    override(session=FakeSession(league=league, membership=object()), store=store, verifier=verifier)
    body = {
        "submission_id": str(sub.id), "league_id": str(league.id), "steps": 12000,
        "for_date": "2026-01-14", "proof_path": f"{user.id}/other.jpg",
    }
    async with _client() as ac:
        r = await ac.post("/submissions/verify", json=body)
    assert r.status_code == 200
    assert verifier.calls == [(str(sub.id), 8000, date(2026, 1, 15), f"{user.id}/abc.jpg")]
    assert r.json()["submission"]["steps"] == 8000
    assert store.commits == 1


@pytest.mark.asyncio
async def test_verify_without_stored_proof_is_400(override, user):
    league = make_league()
    sub = make_submission(league, user)
    verifier = FakeVerifier(None)
    override(session=FakeSession(league=league, membership=object()), store=FakeStore(sub=sub), verifier=verifier)
    body = {
        "submission_id": str(sub.id), "league_id": str(league.id), "steps": 8000,
        "for_date": "2026-01-15", "proof_path": f"{user.id}/abc.jpg",
    }
    async with _client() as ac:
        r = await ac.post("/submissions/verify", json=body)
    assert r.status_code == 400
    assert verifier.calls == []


@pytest.mark.asyncio
async def test_submission_saved_when_proof_unreadable(override, user):
    league = make_league()
    sub = make_submission(league, user, proof_path=f"{user.id}/abc.jpg")
    verifier = FakeVerifier(Failed(code="storage_error", message="Proof image could not be read from storage", status=503))
    override(session=FakeSession(league=league, membership=object()), store=FakeStore(sub=sub), verifier=verifier)
    body = {"league_id": str(league.id), "date": "2026-01-15", "steps": 8000, "proof_path": f"{user.id}/abc.jpg"}
    async with _client() as ac:
        r = await ac.post("/submissions", json=body)
    assert r.status_code == 202
    data = r.json()
    assert data["submission"]["id"] == str(sub.id)
    assert data["verification_error"]["error"] == "storage_error"
    assert data["verification_error"]["should_retry"] is False


class LeaderboardStore:
    """Filters rows the way the SQL query would."""

    def __init__(self, rows):
        self.rows = rows
        self.queries = []

    async def query(self, league_id=None, rng=None, user_ids=None, verified="all"):
        self.queries.append((rng, verified))
        out = [r for r in self.rows if rng is None or rng.start <= r.for_date <= rng.end]
        if verified == "verified":
            out = [r for r in out if r.verified]
        elif verified == "unverified":
            out = [r for r in out if not r.verified]
        return out

    async def dates_by_user(self, league_id):
        return {}


class LeaderboardSession(FakeSession):
    def __init__(self, league, members=()):
        super().__init__(league=league, membership=object())
        self.members = list(members)

    async def execute(self, query):
        return SimpleNamespace(all=lambda: self.members)


@pytest.fixture
def no_records(monkeypatch):
    async def _none(session, user_ids):
        return {}
    monkeypatch.setattr("stepleague.routes.leaderboard.get_user_records", _none)


async def _leaderboard(params):
    async with _client() as ac:
        r = await ac.get("/leaderboard", params=params)
    assert r.status_code == 200, r.text
    return r.json()


@pytest.mark.asyncio
async def test_leaderboard_compares_two_periods(override, no_records):
    league = make_league()
    store = LeaderboardStore([
        ScoredRow("u1", date(2026, 1, 8), 1000),
        ScoredRow("u1", date(2026, 1, 9), 1000),
        ScoredRow("u1", date(2026, 1, 2), 1500),
        ScoredRow("u2", date(2026, 1, 10), 500),
    ])
    override(session=LeaderboardSession(league), store=store)

    data = await _leaderboard({
        "league_id": str(league.id),
        "period": "custom", "start_date": "2026-01-08", "end_date": "2026-01-14",
        "period_b": "custom", "start_date_b": "2026-01-01", "end_date_b": "2026-01-07",
    })

    first, second = data["leaderboard"]
    assert (first["user_id"], first["total_steps"], first["period_b_steps"], first["period_b_days"]) == ("u1", 2000, 1500, 1)
    assert first["improvement_pct"] == 33.3
    assert first["common_days_steps_a"] is None
    assert (second["user_id"], second["improvement_pct"], second["period_b_steps"]) == ("u2", None, None)
    assert data["meta"]["period_a"] == {"start": "2026-01-08", "end": "2026-01-14"}
    assert data["meta"]["period_b"] == {"start": "2026-01-01", "end": "2026-01-07"}
    assert data["meta"]["total_days_in_period"] == 7


@pytest.mark.asyncio
@pytest.mark.parametrize("verified, steps, verified_days, unverified_days", [
    ("verified", 1000, 1, 0),
    ("unverified", 3000, 0, 1),
    ("all", 4000, 1, 1),
])
async def test_leaderboard_verified_filter(override, no_records, verified, steps, verified_days, unverified_days):
    league = make_league()
    store = LeaderboardStore([
        ScoredRow("u1", date(2026, 1, 8), 1000, verified=True),
        ScoredRow("u1", date(2026, 1, 9), 3000, verified=False),
    ])
    override(session=LeaderboardSession(league), store=store)

    data = await _leaderboard({
        "league_id": str(league.id), "period": "custom",
        "start_date": "2026-01-08", "end_date": "2026-01-14", "verified": verified,
    })

    row = data["leaderboard"][0]
    assert (row["total_steps"], row["verified_days"], row["unverified_days"]) == (steps, verified_days, unverified_days)
    assert store.queries[0][1] == verified


@pytest.mark.asyncio
async def test_leaderboard_all_time_starts_at_counting_start(override, no_records):
    today = date.today()
    counting_start = today - timedelta(days=3)
    league = make_league(counting_start_date=counting_start)
    store = LeaderboardStore([
        ScoredRow("u1", today - timedelta(days=1), 500),
        ScoredRow("u1", today - timedelta(days=10), 9999),
    ])
    override(session=LeaderboardSession(league), store=store)

    data = await _leaderboard({"league_id": str(league.id), "period": "all_time"})

    assert data["meta"]["period_a"] == {"start": counting_start.isoformat(), "end": today.isoformat()}
    assert data["meta"]["total_days_in_period"] == 4
    assert data["leaderboard"][0]["total_steps"] == 500


@pytest.mark.asyncio
async def test_leaderboard_range_before_counting_start_is_empty(override, no_records):
    league = make_league(counting_start_date=date(2026, 2, 1))
    store = LeaderboardStore([ScoredRow("u1", date(2026, 1, 5), 500)])
    override(session=LeaderboardSession(league), store=store)

    data = await _leaderboard({
        "league_id": str(league.id), "period": "custom", "start_date": "2026-01-01", "end_date": "2026-01-10",
    })

    assert data["leaderboard"] == []
    assert data["meta"]["period_a"] is None
    assert data["meta"]["total_members"] == 0
    assert data["meta"]["total_days_in_period"] == 0
    assert store.queries == []


@pytest.mark.asyncio
async def test_leaderboard_pages_after_ranking(override, no_records):
    league = make_league()
    store = LeaderboardStore([
        ScoredRow("u1", date(2026, 1, 8), 300),
        ScoredRow("u2", date(2026, 1, 8), 200),
        ScoredRow("u3", date(2026, 1, 8), 100),
    ])
    members = [("u1", "Ann", None, "ann"), ("u2", None, "B", "bea"), ("u3", "Cy", None, "cy")]
    override(session=LeaderboardSession(league, members), store=store)

    data = await _leaderboard({
        "league_id": str(league.id), "period": "custom",
        "start_date": "2026-01-08", "end_date": "2026-01-08", "limit": 1, "offset": 1,
    })

    assert len(data["leaderboard"]) == 1
    row = data["leaderboard"][0]
    assert (row["rank"], row["user_id"], row["total_steps"]) == (2, "u2", 200)
    assert (row["display_name"], row["nickname"]) == ("bea", "B")
    meta = data["meta"]
    assert (meta["total_members"], meta["team_total_steps"], meta["limit"], meta["offset"]) == (3, 600, 1, 1)
