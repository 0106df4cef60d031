from __future__ import annotations
import uuid
from datetime import date, datetime, timezone
from types import SimpleNamespace
import pytest
from stepleague.main import app
from stepleague.auth_deps import get_current_user
from stepleague.db import get_session
from stepleague.runtime import get_queue, get_storage, get_submission_store, get_verifier


class FakeSession:
    """Answers the membership lookups the routes make; anything else is a test bug."""

    def __init__(self, league=None, membership=None):
        self.league = league
        self.membership = membership
        self.commits = 0

    async def get(self, model, ident):
        if self.league is not None and str(ident) == str(self.league.id):
            return self.league
        return None

    async def scalar(self, query):
        return self.membership

    async def commit(self):
        self.commits += 1


def make_user(**kw):
    return SimpleNamespace(id=kw.pop("id", uuid.uuid4()), is_superadmin=False, **kw)


def make_league(**kw):
    defaults = dict(
        id=uuid.uuid4(), owner_id=uuid.uuid4(), counting_start_date=None, backfill_limit=None,
        require_verification_photo=False, allow_manual_entry=True,
    )
    defaults.update(kw)
    return SimpleNamespace(**defaults)


def make_submission(league, user, **kw):
    defaults = dict(
        id=uuid.uuid4(), league_id=league.id, user_id=user.id, for_date=date(2026, 1, 15), steps=8000,
        partial=False, proof_path=None, verified=None, tolerance_used=None, extracted_steps=None,
        extracted_date=None, verification_notes=None, flagged=False, flag_reason=None,
        created_at=datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc),
    )
    defaults.update(kw)
    return SimpleNamespace(**defaults)


@pytest.fixture
def user():
    return make_user()


@pytest.fixture
def override(user):
    """Install dependency overrides; returns a setter for the fakes each test needs."""
    def install(session=None, store=None, storage=None, verifier=None, queue=None):
        async def _session():
            yield session or FakeSession()
        app.dependency_overrides[get_session] = _session
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_submission_store] = lambda: store
        app.dependency_overrides[get_storage] = lambda: storage
        app.dependency_overrides[get_verifier] = lambda: verifier
        app.dependency_overrides[get_queue] = lambda: queue
    yield install
    app.dependency_overrides.clear()
