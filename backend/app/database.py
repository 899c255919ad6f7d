"""Database engine, session factory, and declarative base.

All payment tables share one DeclarativeBase.  The session dependency
`get_db()` commits on success and rolls back on any exception, so a
router handler either lands all of its writes or none of them.

Services that manage their own transaction boundaries (posting,
voiding, the per-grower commits of an actual run) call
`session.commit()` / `session.rollback()` themselves.
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


# ── Base class ──────────────────────────────────────────────

class Base(DeclarativeBase):
    """Models for the grower payment schema."""
    pass


# ── Session dependency ──────────────────────────────────────

async def get_db() -> AsyncSession:
    """Yield a session; commit on success, roll back on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
