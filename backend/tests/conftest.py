"""
Shared pytest fixtures for the gateway tests.

Each test gets its own SQLite file database under tmp_path (aiosqlite),
so concurrent sessions behave like separate connections and nothing
leaks between tests. HTTP tests talk to the ASGI app in-process through
httpx; the lifespan does not run, collaborators come from overrides.
"""

# IMPORTANT: settings are read at import time, so the database URL must be
# in the environment before anything from lynxa is imported.
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./lynxa-test.db")

from collections.abc import AsyncIterator

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from lynxa.auth.dependencies import get_gate, get_key_store
from lynxa.auth.permissions import ALL_PERMISSIONS
from lynxa.auth.verifier import KeyVerifier
from lynxa.core.database import create_all_tables, get_db_session
from lynxa.main import app
from lynxa.models.owner import Owner
from lynxa.models.usage import UsageLog
from lynxa.services.gate import RequestGate
from lynxa.services.rate_limiter import InMemoryRateLimitStore
from lynxa.services.usage import UsageAccountant
from lynxa.stores.keys import SqlKeyStore
from lynxa.stores.usage import SqlUsageStore


class FakeClock:
    """Epoch-millisecond clock the tests move by hand."""

    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


# =============================================================================
# DATABASE FIXTURES
# =============================================================================

@pytest.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lynxa.db'}")
    await create_all_tables(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def owner(session_factory) -> Owner:
    async with session_factory() as session:
        row = Owner(email="owner@example.com", display_name="Test Owner")
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
async def other_owner(session_factory) -> Owner:
    async with session_factory() as session:
        row = Owner(email="other@example.com", display_name="Other Owner")
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
async def admin_owner(session_factory) -> Owner:
    async with session_factory() as session:
        row = Owner(email="admin@example.com", display_name="Admin", role="admin")
        session.add(row)
        await session.commit()
    return row


async def usage_rows(session_factory) -> list[UsageLog]:
    """Every usage row, oldest first."""
    async with session_factory() as session:
        result = await session.execute(select(UsageLog).order_by(UsageLog.timestamp))
        return list(result.scalars().all())


# =============================================================================
# GATEWAY FIXTURES
# =============================================================================

@pytest.fixture
def key_store(session_factory) -> SqlKeyStore:
    return SqlKeyStore(session_factory, max_active_keys=3)


@pytest.fixture
def usage_store(session_factory) -> SqlUsageStore:
    return SqlUsageStore(session_factory)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gate(key_store, usage_store, clock) -> RequestGate:
    return RequestGate(
        verifier=KeyVerifier(key_store),
        limiter=InMemoryRateLimitStore(),
        accountant=UsageAccountant(usage_store),
        clock=clock,
    )


@pytest.fixture
def issue_key(key_store, owner):
    """Factory: issue a key for `owner` and return (raw_key, record)."""

    async def _issue(
        name: str = "test",
        permissions=tuple(sorted(ALL_PERMISSIONS)),
        rate_limit: int = 1000,
        rate_limit_window_ms: int = 3_600_000,
        expires_at=None,
        owner_id=None,
    ):
        return await key_store.create(
            owner_id or owner.id,
            name,
            list(permissions),
            rate_limit,
            rate_limit_window_ms,
            expires_at=expires_at,
        )

    return _issue


# =============================================================================
# HTTP CLIENT
# =============================================================================

@pytest.fixture
async def client(gate, key_store, session_factory) -> AsyncIterator[httpx.AsyncClient]:
    async def _db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_gate] = lambda: gate
    app.dependency_overrides[get_key_store] = lambda: key_store
    app.dependency_overrides[get_db_session] = _db_session

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


def bearer(raw_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {raw_key}"}
