from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from stepleague.config import settings
from stepleague.db import engine
from stepleague.logging_setup import configure_logging
from stepleague.runtime import Runtime
from stepleague.routes.system import router as system_router
from stepleague.routes.auth import router as auth_router
from stepleague.routes.leagues import router as leagues_router
from stepleague.routes.leaderboard import router as leaderboard_router
from stepleague.routes.submissions import router as submissions_router
from stepleague.routes.proofs import router as proofs_router
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha)
    runtime = Runtime.build(settings)
    runtime.storage.ensure_bucket()
    app.state.runtime = runtime
    yield
    # Shutdown
    await runtime.aclose()
    await engine.dispose()
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} API for step-count leagues",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Total-Count", "Content-Range", "Retry-After"],
)

# Include routers
app.include_router(system_router)
app.include_router(auth_router)
app.include_router(leagues_router)
app.include_router(leaderboard_router)
app.include_router(submissions_router)
app.include_router(proofs_router)

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
