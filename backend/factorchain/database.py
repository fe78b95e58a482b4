"""Database engine, session factory and declarative base.

All invoice-marketplace tables live in a single schema:
  profiles, invoices, activity_logs, reconciliation_alerts

`get_db()` is the FastAPI dependency; it commits on a clean exit and rolls
back if the request raised.
"""

from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from factorchain.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=10,
    max_overflow=5,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    """Yield a session for the duration of one request."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """Session factory for work that must commit outside the request session."""
    return async_session
