"""
Database engine and session plumbing.

Routes receive a session through the `get_db` dependency. Background work
(usage writes, cache refreshes) opens its own sessions from `async_session`
so it never shares a session with a request that may already be finished.
"""
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from app.config import settings


def _async_url(url: str) -> str:
    """Map plain postgres URLs (as issued by most hosts) to the asyncpg driver."""
    if url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url[len("postgres://"):]
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


class Base(DeclarativeBase):
    pass


engine = create_async_engine(_async_url(settings.DATABASE_URL), echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session() as session:
        yield session


async def init_db():
    """Create tables that don't exist yet."""
    # Import models so they register with Base.metadata
    from app import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
