"""Tests for SqlKeyStore: issuance, caps, ownership scoping."""

import asyncio
import datetime
import uuid

import pytest
from sqlalchemy import select

from lynxa.auth.errors import KeyLimitReached
from lynxa.auth.hashing import hash_api_key
from lynxa.core.database import utcnow
from lynxa.models.api_key import APIKey


async def test_create_stores_only_the_hash(issue_key, session_factory):
    raw_key, record = await issue_key(name="prod")

    async with session_factory() as session:
        row = await session.scalar(select(APIKey).where(APIKey.id == record.id))

    assert row.key_hash == hash_api_key(raw_key)
    assert row.key_hash != raw_key
    assert row.prefix == raw_key[:12]
    assert record.name == "prod"
    assert record.is_active
    assert record.usage_count == 0


async def test_find_by_hash(issue_key, key_store, owner):
    raw_key, record = await issue_key()

    found = await key_store.find_by_hash(hash_api_key(raw_key))

    assert found.id == record.id
    assert found.owner_role == "user"
    assert found.owner_active is True
    assert await key_store.find_by_hash(hash_api_key("lynxa_nope")) is None


async def test_live_key_cap(issue_key, key_store, owner):
    # key_store fixture caps at 3
    for i in range(3):
        await issue_key(name=f"k{i}")

    with pytest.raises(KeyLimitReached) as exc_info:
        await issue_key(name="one-too-many")
    assert exc_info.value.limit == 3


async def test_revoked_and_expired_keys_free_the_cap(issue_key, key_store, owner):
    _, first = await issue_key(name="a")
    await issue_key(name="b", expires_at=utcnow() - datetime.timedelta(minutes=1))
    await issue_key(name="c")
    await key_store.revoke(owner.id, first.id)

    # Only "c" is live.
    await issue_key(name="d")
    await issue_key(name="e")


async def test_revoke_is_scoped_to_owner(issue_key, key_store, owner, other_owner):
    _, record = await issue_key()

    assert await key_store.revoke(other_owner.id, record.id) is False
    assert await key_store.revoke(owner.id, uuid.uuid4()) is False
    assert await key_store.revoke(owner.id, record.id) is True

    (stored,) = await key_store.list_for_owner(owner.id)
    assert stored.is_active is False


async def test_rename(issue_key, key_store, owner, other_owner):
    _, record = await issue_key(name="old")

    assert await key_store.rename(other_owner.id, record.id, "stolen") is None

    renamed = await key_store.rename(owner.id, record.id, "new")
    assert renamed.name == "new"
    assert renamed.id == record.id


async def test_list_for_owner_newest_first(issue_key, key_store, owner, other_owner):
    await issue_key(name="first")
    await issue_key(name="second")
    await issue_key(name="elsewhere", owner_id=other_owner.id)

    names = [r.name for r in await key_store.list_for_owner(owner.id)]
    assert names == ["second", "first"]


async def test_increment_usage_is_in_database(issue_key, key_store, owner):
    _, record = await issue_key()
    now = utcnow()

    await key_store.increment_usage(record.id, now)
    await key_store.increment_usage(record.id, now)

    (stored,) = await key_store.list_for_owner(owner.id)
    assert stored.usage_count == 2
    assert abs((stored.last_used_at - now).total_seconds()) < 1


async def test_concurrent_creates_respect_the_cap(key_store, owner):
    # key_store fixture caps at 3
    results = await asyncio.gather(
        *(key_store.create(owner.id, f"k{i}", ["lynxa:read"], 10, 1000) for i in range(6)),
        return_exceptions=True,
    )

    issued = [r for r in results if not isinstance(r, BaseException)]
    refused = [r for r in results if isinstance(r, KeyLimitReached)]
    assert (len(issued), len(refused)) == (3, 3)
    assert len(await key_store.list_for_owner(owner.id)) == 3


async def test_second_revoke_changes_nothing(issue_key, key_store, owner):
    _, record = await issue_key()

    assert await key_store.revoke(owner.id, record.id) is True
    assert await key_store.revoke(owner.id, record.id) is False


async def test_window_beyond_int32_is_stored(issue_key, key_store, owner):
    thirty_days_ms = 30 * 24 * 3_600_000
    _, record = await issue_key(rate_limit_window_ms=thirty_days_ms)

    (stored,) = await key_store.list_for_owner(owner.id)
    assert stored.rate_limit_window_ms == record.rate_limit_window_ms == thirty_days_ms
