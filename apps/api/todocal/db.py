from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine


def make_engine(database_url: str) -> AsyncEngine:
  if database_url.startswith("sqlite"):
    return create_async_engine(database_url)
  return create_async_engine(database_url, pool_size=10, max_overflow=0, pool_pre_ping=True)


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
  return async_sessionmaker(engine, expire_on_commit=False)
