"""Database engines, sessions and declarative base."""

from datetime import datetime, timezone

from sqlalchemy import JSON, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from helpdesk.config import settings

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


# Async engine for the API
engine = create_async_engine(settings.database_url, pool_pre_ping=True)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Sync engine for RQ workers and the service layer (RQ tasks are synchronous)
sync_engine = create_engine(settings.database_url_sync, pool_size=5, max_overflow=2, pool_pre_ping=True)
SyncSession = sessionmaker(bind=sync_engine)


async def get_db():
    """FastAPI dependency yielding an async session."""
    async with async_session() as session:
        yield session


def get_sync_session() -> Session:
    return SyncSession()


def utcnow() -> datetime:
    """Naive UTC now, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
