"""Tests for the usage accountant and the SQL usage store aggregations."""

import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from lynxa.auth.errors import StorageUnavailable
from lynxa.core.database import utcnow
from lynxa.services.usage import UsageAccountant, window_for_timeframe
from lynxa.stores.usage import UsageEntry, UsageWindow

from conftest import usage_rows


def _entry(owner_id, key_id=None, **overrides) -> UsageEntry:
    fields = {
        "owner_id": owner_id,
        "api_key_id": key_id,
        "endpoint": "/v1/chat",
        "method": "POST",
        "status_code": 200,
        "latency_ms": 10,
    }
    fields.update(overrides)
    return UsageEntry(**fields)


@pytest.fixture
def accountant(usage_store) -> UsageAccountant:
    return UsageAccountant(usage_store)


def _wide_window() -> UsageWindow:
    now = utcnow()
    return UsageWindow(now - datetime.timedelta(days=1), now + datetime.timedelta(days=1))


async def test_record_prices_the_row(accountant, owner, session_factory):
    result = await accountant.record(
        _entry(owner.id, tokens_used=1500, model_name="lynxa-pro"),
    )

    assert result.logged
    (row,) = await usage_rows(session_factory)
    assert row.cost_usd == Decimal("0.003")
    assert row.tokens_used == 1500


async def test_rows_without_model_cost_nothing(accountant, owner, session_factory):
    await accountant.record(_entry(owner.id, status_code=429))

    (row,) = await usage_rows(session_factory)
    assert row.cost_usd == Decimal("0")
    assert row.status_code == 429


async def test_record_never_raises():
    store = AsyncMock()
    store.append.side_effect = StorageUnavailable("usage store unavailable")

    result = await UsageAccountant(store).record(_entry(owner_id=None))

    assert result.logged is False
    assert "unavailable" in result.error


async def test_unknown_model_is_reported_not_raised(accountant, owner, session_factory):
    result = await accountant.record(_entry(owner.id, model_name="gpt-x", tokens_used=5))

    assert result.logged is False
    assert await usage_rows(session_factory) == []


async def test_aggregate(accountant, owner, other_owner):
    for status_code, latency, tokens in [(200, 10, 1000), (201, 30, 1000), (429, 2, 0), (500, 50, 0)]:
        await accountant.record(_entry(
            owner.id,
            status_code=status_code,
            latency_ms=latency,
            tokens_used=tokens,
            model_name="lynxa-fast" if tokens else None,
        ))
    await accountant.record(_entry(other_owner.id))

    stats = await accountant.aggregate(owner.id, _wide_window())

    assert stats.total_requests == 4
    assert stats.successful_requests == 2
    assert stats.error_requests == 2
    assert stats.success_rate == 50.0
    assert stats.error_rate == 50.0
    assert stats.avg_latency_ms == pytest.approx(23.0)
    assert stats.total_tokens == 2000
    assert stats.total_cost_usd == Decimal("0.001")


async def test_aggregate_empty_window(accountant, owner):
    stats = await accountant.aggregate(owner.id, _wide_window())

    assert stats.total_requests == 0
    assert stats.success_rate == 0.0
    assert stats.total_cost_usd == Decimal("0")


async def test_aggregate_filters_by_key_and_window(accountant, issue_key, owner):
    _, key_a = await issue_key(name="a")
    _, key_b = await issue_key(name="b")
    old = utcnow() - datetime.timedelta(days=10)

    await accountant.record(_entry(owner.id, key_a.id))
    await accountant.record(_entry(owner.id, key_b.id))
    await accountant.record(_entry(owner.id, key_a.id, timestamp=old))

    assert (await accountant.aggregate(owner.id, _wide_window(), key_a.id)).total_requests == 1
    assert (await accountant.aggregate(owner.id, window_for_timeframe("30d"))).total_requests == 3
    assert (await accountant.aggregate(owner.id, window_for_timeframe("7d"))).total_requests == 2


async def test_report_breakdowns(accountant, owner):
    for endpoint, status_code in [
        ("/v1/chat", 200),
        ("/v1/chat", 200),
        ("/v1/chat", 429),
        ("/v1/other", 404),
    ]:
        await accountant.record(_entry(owner.id, endpoint=endpoint, status_code=status_code))

    report = await accountant.report(owner.id, _wide_window())

    assert report.stats.total_requests == 4
    assert [(e.endpoint, e.requests) for e in report.endpoints] == [
        ("/v1/chat", 3),
        ("/v1/other", 1),
    ]
    codes = {s.status_code: (s.count, s.percentage) for s in report.status_codes}
    assert codes == {200: (2, 50.0), 429: (1, 25.0), 404: (1, 25.0)}


def test_window_for_timeframe_falls_back_to_30_days():
    now = utcnow()
    assert window_for_timeframe("bogus", now).start == now - datetime.timedelta(days=30)
    assert window_for_timeframe("1y", now).start == now - datetime.timedelta(days=365)
    assert window_for_timeframe("1d", now).end == now
