from __future__ import annotations
import jwt
from fastapi import APIRouter, Depends, HTTPException, Header
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
import structlog
from stepleague.db import get_session
from stepleague.auth_deps import get_current_user
from stepleague.models.user import User
from stepleague.schemas.auth import RegisterRequest, LoginRequest, UserPublic, TokenPair
from stepleague.security import hash_password, verify_password, make_access_token, make_refresh_token, decode_token

router = APIRouter(prefix="/auth", tags=["auth"])
log = structlog.get_logger()

def _to_public(user: User) -> UserPublic:
    return UserPublic(
        id=user.id,
        email=user.email,
        username=user.username,
        display_name=user.display_name,
        nickname=user.nickname,
        created_at=user.created_at,
    )

@router.post("/register", status_code=201, response_model=UserPublic)
async def register(payload: RegisterRequest, session: AsyncSession = Depends(get_session)):
    exists = await session.scalar(
        select(User).where(or_(User.email == payload.email, User.username == payload.username))
    )
    if exists:
        detail = "Email already registered" if exists.email == payload.email else "Username already taken"
        raise HTTPException(status_code=409, detail=detail)
    user = User(
        email=payload.email,
        username=payload.username,
        display_name=payload.display_name,
        password_hash=hash_password(payload.password),
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    log.info("user_registered", user_id=str(user.id))
    return _to_public(user)

@router.post("/login", response_model=TokenPair)
async def login(payload: LoginRequest, session: AsyncSession = Depends(get_session)):
    user = await session.scalar(select(User).where(User.email == payload.email))
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return TokenPair(access=make_access_token(str(user.id)), refresh=make_refresh_token(str(user.id)))

@router.post("/refresh", response_model=TokenPair)
async def refresh(authorization: str | None = Header(None)):
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing refresh token")
    token = authorization.split(" ", 1)[1]
    try:
        data = decode_token(token, "refresh")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    except ValueError:
        raise HTTPException(status_code=401, detail="Wrong token type")
    sub = data.get("sub")
    return TokenPair(access=make_access_token(sub), refresh=make_refresh_token(sub))

@router.get("/me", response_model=UserPublic)
async def me(user: User = Depends(get_current_user)):
    return _to_public(user)
