from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from settlement_engine.config import settings


def create_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    kwargs.setdefault("echo", settings.sql_echo)
    if not (url or settings.database_url).startswith("sqlite"):
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url or settings.database_url, **kwargs)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


engine = create_engine()
SessionMaker = create_sessionmaker(engine)

