from __future__ import annotations
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase
from stepleague.config import settings

class Base(DeclarativeBase):
    pass

# shared by the API and RQ workers
engine = create_async_engine(settings.database_url, pool_pre_ping=True, echo=False)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request. Routes commit explicitly; anything left over is rolled back on close."""
    async with SessionLocal() as session:
        yield session
