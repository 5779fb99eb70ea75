"""
Async database engine, session factory, ORM base and time helpers.

Rules enforced:
  • Every DB call goes through AsyncSession.
  • Routers get request-scoped sessions via Depends(get_db_session);
    stores receive the session factory at construction time instead of
    reaching for a global manager.
  • The declarative Base is shared across all models so create_all()
    sees the whole schema from a single metadata object.
  • Timestamps are timezone-aware UTC in Python. SQLite (tests) hands them
    back naive, so readers normalise through as_utc().
"""

import datetime
from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from lynxa.core.config import settings

# ── Engine ──────────────────────────────────────────────────
# pool_pre_ping: drop stale connections before reuse
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

# ── Session factory ─────────────────────────────────────────
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,  # records are read after commit
)


# ── ORM Base ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """Shared declarative base for all SQLAlchemy models."""


# ── Time helpers ────────────────────────────────────────────
def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Attach UTC to naive timestamps read back from the database."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=datetime.timezone.utc)


# ── Schema / connectivity ───────────────────────────────────
async def create_all_tables(bind: AsyncEngine = engine) -> None:
    """Create every table registered on Base.metadata (idempotent)."""
    # Import models so the metadata is fully populated
    import lynxa.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def check_connection(bind: AsyncEngine = engine) -> bool:
    """Return True when a trivial query succeeds."""
    async with bind.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


# ── Dependency ──────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a scoped async session for one request.

    The session is committed by the caller (router/service);
    this generator only guarantees cleanup on exit.
    """
    async with async_session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
