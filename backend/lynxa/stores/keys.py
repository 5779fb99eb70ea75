"""
Key store — persistence for API keys.

The verifier and the management routes only see `ApiKeyRecord` snapshots,
never live ORM objects, so the store can be swapped for a fake in tests.

Rules enforced:
  • Lookup is by exact hash match and always hits the database.
  • Usage counters move with a single in-database increment
    (UPDATE … SET usage_count = usage_count + 1), never read-modify-write.
  • The live-key cap is checked and the insert made while holding the
    owner's lock: an in-process asyncio.Lock per owner, plus a row lock
    (SELECT … FOR UPDATE) on the owner for other workers on Postgres.
  • Revocation only ever moves a live key to revoked.
  • Database / driver failures surface as StorageUnavailable.
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lynxa.auth.errors import KeyLimitReached, StorageUnavailable
from lynxa.auth.hashing import display_prefix, generate_api_key
from lynxa.core.config import settings
from lynxa.core.database import as_utc, utcnow
from lynxa.models.api_key import APIKey
from lynxa.models.owner import Owner

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApiKeyRecord:
    """Immutable snapshot of one api_keys row (plus owner role/status)."""

    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    prefix: str
    permissions: tuple[str, ...]
    rate_limit: int
    rate_limit_window_ms: int
    is_active: bool
    expires_at: datetime.datetime | None
    usage_count: int
    last_used_at: datetime.datetime | None
    created_at: datetime.datetime
    owner_role: str = "user"
    owner_active: bool = True

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at


class KeyStore(Protocol):
    async def find_by_hash(self, key_hash: str) -> ApiKeyRecord | None: ...

    async def increment_usage(
        self, key_id: uuid.UUID, now: datetime.datetime,
    ) -> None: ...

    async def create(
        self,
        owner_id: uuid.UUID,
        name: str,
        permissions: Sequence[str],
        rate_limit: int,
        rate_limit_window_ms: int,
        expires_at: datetime.datetime | None = None,
    ) -> tuple[str, ApiKeyRecord]: ...

    async def revoke(self, owner_id: uuid.UUID, key_id: uuid.UUID) -> bool: ...

    async def rename(
        self, owner_id: uuid.UUID, key_id: uuid.UUID, name: str,
    ) -> ApiKeyRecord | None: ...

    async def list_for_owner(self, owner_id: uuid.UUID) -> list[ApiKeyRecord]: ...


def _to_record(
    api_key: APIKey,
    owner_role: str = "user",
    owner_active: bool = True,
) -> ApiKeyRecord:
    return ApiKeyRecord(
        id=api_key.id,
        owner_id=api_key.owner_id,
        name=api_key.name,
        prefix=api_key.prefix,
        permissions=tuple(api_key.permissions or ()),
        rate_limit=api_key.rate_limit,
        rate_limit_window_ms=api_key.rate_limit_window_ms,
        is_active=api_key.is_active,
        expires_at=as_utc(api_key.expires_at),
        usage_count=api_key.usage_count,
        last_used_at=as_utc(api_key.last_used_at),
        created_at=as_utc(api_key.created_at),
        owner_role=owner_role,
        owner_active=owner_active,
    )


class SqlKeyStore:
    """SQLAlchemy-backed KeyStore."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_active_keys: int = settings.MAX_ACTIVE_KEYS_PER_OWNER,
    ) -> None:
        self._session_factory = session_factory
        self._max_active_keys = max_active_keys
        self._owner_locks: dict[uuid.UUID, asyncio.Lock] = {}

    def _owner_lock(self, owner_id: uuid.UUID) -> asyncio.Lock:
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = self._owner_locks.setdefault(owner_id, asyncio.Lock())
        return lock

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Key store unavailable: %s", exc.__class__.__name__)
            raise StorageUnavailable("key store unavailable") from exc

    # ── Verification path ───────────────────────────────────
    async def find_by_hash(self, key_hash: str) -> ApiKeyRecord | None:
        stmt = (
            select(APIKey, Owner.role, Owner.is_active)
            .join(Owner, Owner.id == APIKey.owner_id)
            .where(APIKey.key_hash == key_hash)
        )
        async with self._session() as session:
            row = (await session.execute(stmt)).one_or_none()

        if row is None:
            return None

        api_key, role, owner_active = row
        return _to_record(api_key, owner_role=role, owner_active=owner_active)

    async def increment_usage(
        self, key_id: uuid.UUID, now: datetime.datetime,
    ) -> None:
        """Atomically bump usage_count and stamp last_used_at."""
        stmt = (
            update(APIKey)
            .where(APIKey.id == key_id)
            .values(usage_count=APIKey.usage_count + 1, last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            await session.execute(stmt)
            await session.commit()

    # ── Management path ─────────────────────────────────────
    async def count_live(
        self,
        session: AsyncSession,
        owner_id: uuid.UUID,
        now: datetime.datetime,
    ) -> int:
        """Active keys that have not expired."""
        stmt = (
            select(func.count())
            .select_from(APIKey)
            .where(
                APIKey.owner_id == owner_id,
                APIKey.is_active.is_(True),
                or_(APIKey.expires_at.is_(None), APIKey.expires_at > now),
            )
        )
        return (await session.execute(stmt)).scalar_one()

    async def create(
        self,
        owner_id: uuid.UUID,
        name: str,
        permissions: Sequence[str],
        rate_limit: int,
        rate_limit_window_ms: int,
        expires_at: datetime.datetime | None = None,
    ) -> tuple[str, ApiKeyRecord]:
        """
        Issue a new key for owner_id.

        Returns (raw_key, record). The raw key is not recoverable afterwards.

        Raises:
            KeyLimitReached: owner already holds the maximum live keys.
        """
        async with self._owner_lock(owner_id), self._session() as session:
            # Row lock is a no-op on SQLite; the asyncio lock covers it there.
            await session.execute(
                select(Owner.id).where(Owner.id == owner_id).with_for_update(),
            )
            live = await self.count_live(session, owner_id, utcnow())
            if live >= self._max_active_keys:
                raise KeyLimitReached(owner_id, self._max_active_keys)

            raw_key, key_hash = generate_api_key()
            api_key = APIKey(
                owner_id=owner_id,
                name=name,
                key_hash=key_hash,
                prefix=display_prefix(raw_key),
                permissions=list(permissions),
                rate_limit=rate_limit,
                rate_limit_window_ms=rate_limit_window_ms,
                expires_at=expires_at,
            )
            session.add(api_key)
            await session.commit()

        logger.info("Issued API key %s for owner %s", api_key.prefix, owner_id)
        return raw_key, _to_record(api_key)

    async def revoke(self, owner_id: uuid.UUID, key_id: uuid.UUID) -> bool:
        """
        Soft-revoke a live key.

        Returns False when the key does not belong to owner_id or is
        already revoked, so repeated calls change nothing.
        """
        stmt = (
            update(APIKey)
            .where(
                APIKey.id == key_id,
                APIKey.owner_id == owner_id,
                APIKey.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()

        revoked = result.rowcount > 0
        if revoked:
            logger.info("Revoked API key %s for owner %s", key_id, owner_id)
        return revoked

    async def rename(
        self, owner_id: uuid.UUID, key_id: uuid.UUID, name: str,
    ) -> ApiKeyRecord | None:
        stmt = select(APIKey).where(
            APIKey.id == key_id, APIKey.owner_id == owner_id,
        )
        async with self._session() as session:
            api_key = (await session.execute(stmt)).scalar_one_or_none()
            if api_key is None:
                return None
            api_key.name = name
            await session.commit()
            return _to_record(api_key)

    async def list_for_owner(self, owner_id: uuid.UUID) -> list[ApiKeyRecord]:
        stmt = (
            select(APIKey)
            .where(APIKey.owner_id == owner_id)
            .order_by(APIKey.created_at.desc())
        )
        async with self._session() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_record(api_key) for api_key in rows]
