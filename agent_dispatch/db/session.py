from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlalchemy.orm import DeclarativeBase

from agent_dispatch.settings import settings


def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)

AsyncSessionLocal = build_session_factory(engine)


class Base(DeclarativeBase):
    pass


async def create_schema(bind: AsyncEngine) -> None:
    # Import models so every table is registered on Base.metadata
    from agent_dispatch.db import models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

