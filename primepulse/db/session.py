"""Async engine and session factories."""

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from primepulse.db.models import AnalyticsBase, Base


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, making sure a file-backed SQLite directory exists."""
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database not in (None, "", ":memory:"):
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return create_async_engine(url, echo=echo, pool_pre_ping=parsed.get_backend_name() != "sqlite")


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_relational_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def create_analytics_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(AnalyticsBase.metadata.create_all)
