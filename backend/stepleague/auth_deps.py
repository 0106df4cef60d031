from __future__ import annotations
import uuid
import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from stepleague.db import get_session
from stepleague.security import decode_token
from stepleague.models.user import User
from stepleague.models.league import League, Membership

security = HTTPBearer()

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    session: AsyncSession = Depends(get_session)
) -> User:
    try:
        data = decode_token(credentials.credentials, "access")
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    except ValueError:
        raise HTTPException(status_code=401, detail="Wrong token type")
    try:
        user_id = uuid.UUID(str(data.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user

async def load_league_for_member(session: AsyncSession, league_id, user: User) -> tuple[League, Membership | None]:
    """404 if the league is missing, 403 unless the user is a member or a superadmin."""
    league = await session.get(League, league_id)
    if not league:
        raise HTTPException(status_code=404, detail="League not found")
    membership = await session.scalar(
        select(Membership).where(Membership.league_id == league.id, Membership.user_id == user.id)
    )
    if not membership and not user.is_superadmin:
        raise HTTPException(status_code=403, detail="You are not a member of this league")
    return league, membership
