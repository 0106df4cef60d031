from __future__ import annotations
from dataclasses import dataclass
from fastapi import Depends, Request
from redis import Redis
from rq import Queue
from sqlalchemy.ext.asyncio import AsyncSession
from stepleague.config import Settings
from stepleague.db import get_session
from stepleague.services.storage import ProofStorage
from stepleague.services.submission_store import SubmissionStore
from stepleague.services.verification import VerificationClient


@dataclass
class Runtime:
    """Process-wide clients, created in the app lifespan and closed on shutdown."""
    storage: ProofStorage
    verifier: VerificationClient
    queue: Queue

    @classmethod
    def build(cls, settings: Settings) -> "Runtime":
        storage = ProofStorage(settings)
        return cls(
            storage=storage,
            verifier=VerificationClient(settings, storage),
            queue=Queue("verification", connection=Redis.from_url(settings.redis_url)),
        )

    async def aclose(self) -> None:
        await self.verifier.aclose()
        self.queue.connection.close()


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime

def get_storage(rt: Runtime = Depends(get_runtime)) -> ProofStorage:
    return rt.storage

def get_verifier(rt: Runtime = Depends(get_runtime)) -> VerificationClient:
    return rt.verifier

def get_queue(rt: Runtime = Depends(get_runtime)) -> Queue:
    return rt.queue

def get_submission_store(session: AsyncSession = Depends(get_session)) -> SubmissionStore:
    return SubmissionStore(session)
