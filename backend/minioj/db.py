from typing import Optional
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .config import get_settings

_engine: Optional[AsyncEngine] = None


def make_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, echo=False, future=True)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = make_engine(get_settings().database_url)
    return _engine


async def init_db(engine: Optional[AsyncEngine] = None):
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


def get_session(engine: Optional[AsyncEngine] = None) -> AsyncSession:
    return AsyncSession(engine or get_engine(), expire_on_commit=False)
