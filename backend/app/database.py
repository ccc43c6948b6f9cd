"""Database engine, session factory, and declarative base.

All billing tables live in one schema and carry an ``organization_id``
column; every query issued by the services filters on the organization
taken from the authorized request context.

Session dependency for FastAPI:
  - get_db()  → one transaction per request, committed on success,
                rolled back on any exception
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=20,
    max_overflow=10,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


class Base(DeclarativeBase):
    """Base class for all billing models."""
    pass


async def get_db() -> AsyncSession:
    """Yield a session; commit when the request succeeds."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
