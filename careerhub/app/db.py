# careerhub/app/db.py
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from .config import get_settings

_engine: Optional[AsyncEngine] = None
_session_factory = None


def make_engine(url: str) -> AsyncEngine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_async_engine(url, echo=False, connect_args=connect_args)


def make_session_factory(engine: AsyncEngine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def configure(url: Optional[str] = None) -> AsyncEngine:
    """(Re)bind the module-level engine; tests point it at a temp database."""
    global _engine, _session_factory
    _engine = make_engine(url or get_settings().database_url)
    _session_factory = make_session_factory(_engine)
    return _engine


def get_engine() -> AsyncEngine:
    if _engine is None:
        configure()
    return _engine


def get_session_factory():
    if _session_factory is None:
        configure()
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    # import for side effect: registers the tables on SQLModel.metadata
    from . import models  # noqa: F401

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with get_session_factory()() as session:
        yield session
