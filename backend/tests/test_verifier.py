"""Tests for KeyVerifier against fakes and the SQL key store."""

import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from lynxa.auth.errors import (
    ExpiredKey,
    RejectReason,
    RevokedKey,
    StorageUnavailable,
    UnknownKey,
)
from lynxa.auth.hashing import generate_api_key, hash_api_key
from lynxa.auth.verifier import KeyVerifier, Rejected, VerifiedIdentity
from lynxa.core.database import utcnow
from lynxa.models.owner import Owner
from lynxa.stores.keys import SqlKeyStore


def _fake_store(record=None) -> AsyncMock:
    store = AsyncMock()
    store.find_by_hash.return_value = record
    return store


async def test_unknown_key_rejection_is_idempotent():
    store = _fake_store(record=None)
    verifier = KeyVerifier(store)

    first = await verifier.verify("lynxa_doesnotexist")
    second = await verifier.verify("lynxa_doesnotexist")

    assert first == second == Rejected(RejectReason.UNKNOWN_KEY)
    store.increment_usage.assert_not_awaited()
    store.create.assert_not_called()
    store.revoke.assert_not_called()


async def test_lookup_uses_hash_not_raw_key():
    store = _fake_store(record=None)
    await KeyVerifier(store).verify("lynxa_secret")

    store.find_by_hash.assert_awaited_once_with(hash_api_key("lynxa_secret"))


async def test_accepts_live_key_and_counts_it(issue_key, key_store, owner):
    raw_key, record = await issue_key(permissions=["lynxa:read"], rate_limit=7)

    identity = await KeyVerifier(key_store).verify(raw_key)

    assert isinstance(identity, VerifiedIdentity)
    assert identity.owner_id == owner.id
    assert identity.key_id == record.id
    assert identity.key_prefix == raw_key[:12]
    assert identity.permissions == frozenset({"lynxa:read"})
    assert identity.rate_limit == 7
    assert identity.role == "user"

    (stored,) = await key_store.list_for_owner(owner.id)
    assert stored.usage_count == 1
    assert stored.last_used_at is not None


async def test_concurrent_verifications_count_exactly(issue_key, key_store, owner):
    raw_key, _ = await issue_key()
    verifier = KeyVerifier(key_store)
    n = 20

    results = await asyncio.gather(*(verifier.verify(raw_key) for _ in range(n)))

    assert all(isinstance(r, VerifiedIdentity) for r in results)
    (stored,) = await key_store.list_for_owner(owner.id)
    assert stored.usage_count == n


async def test_rejection_does_not_count(issue_key, key_store, owner):
    raw_key, record = await issue_key()
    await key_store.revoke(owner.id, record.id)

    await KeyVerifier(key_store).verify(raw_key)

    (stored,) = await key_store.list_for_owner(owner.id)
    assert stored.usage_count == 0


async def test_revocation_is_seen_immediately(issue_key, key_store, owner):
    raw_key, record = await issue_key()
    verifier = KeyVerifier(key_store)

    assert isinstance(await verifier.verify(raw_key), VerifiedIdentity)

    await key_store.revoke(owner.id, record.id)

    for _ in range(3):
        assert await verifier.verify(raw_key) == Rejected(RejectReason.REVOKED)


async def test_expired_key_rejected(issue_key, key_store):
    expires_at = utcnow() + datetime.timedelta(hours=1)
    raw_key, _ = await issue_key(expires_at=expires_at)

    later = KeyVerifier(key_store, clock=lambda: expires_at + datetime.timedelta(seconds=1))
    assert await later.verify(raw_key) == Rejected(RejectReason.EXPIRED)

    now = KeyVerifier(key_store)
    assert isinstance(await now.verify(raw_key), VerifiedIdentity)


async def test_inactive_owner_counts_as_revoked(issue_key, key_store, session_factory, owner):
    raw_key, _ = await issue_key()
    async with session_factory() as session:
        await session.execute(
            update(Owner).where(Owner.id == owner.id).values(is_active=False),
        )
        await session.commit()

    assert await KeyVerifier(key_store).verify(raw_key) == Rejected(RejectReason.REVOKED)


async def test_checks_run_in_order(issue_key, key_store, owner):
    # Revoked and expired at once: revocation is reported.
    past = utcnow() - datetime.timedelta(days=1)
    raw_key, record = await issue_key(expires_at=past)
    await key_store.revoke(owner.id, record.id)

    assert await KeyVerifier(key_store).verify(raw_key) == Rejected(RejectReason.REVOKED)


async def test_authenticate_raises_typed_errors(issue_key, key_store, owner):
    verifier = KeyVerifier(key_store)

    with pytest.raises(UnknownKey):
        await verifier.authenticate(generate_api_key()[0])

    raw_key, record = await issue_key(expires_at=utcnow() - datetime.timedelta(seconds=1))
    with pytest.raises(ExpiredKey):
        await verifier.authenticate(raw_key)

    await key_store.revoke(owner.id, record.id)
    with pytest.raises(RevokedKey):
        await verifier.authenticate(raw_key)


async def test_storage_failure_propagates():
    store = AsyncMock()
    store.find_by_hash.side_effect = StorageUnavailable("down")

    with pytest.raises(StorageUnavailable):
        await KeyVerifier(store).verify("lynxa_anything")


async def test_unreachable_database_maps_to_storage_unavailable():
    # A path that cannot be opened.
    broken = create_async_engine("sqlite+aiosqlite:////nonexistent-dir/lynxa.db")
    store = SqlKeyStore(async_sessionmaker(bind=broken))
    try:
        with pytest.raises(StorageUnavailable):
            await KeyVerifier(store).verify("lynxa_anything")
    finally:
        await broken.dispose()
