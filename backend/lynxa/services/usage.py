"""
Usage accountant — writes one log row per gated request and answers
analytics questions over those rows.

Logging policy:
  record() never raises. A usage row that can't be written is reported
  to the operational log and returned as RecordResult(logged=False) —
  losing a row is preferable to failing the caller's response.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass, replace
from decimal import Decimal

from lynxa.core.database import utcnow
from lynxa.services.cost_calculator import calculate_cost
from lynxa.stores.usage import (
    EndpointStats,
    OwnerUsage,
    StatusCodeStats,
    UsageEntry,
    UsageStats,
    UsageStore,
    UsageWindow,
)

logger = logging.getLogger(__name__)

# Analytics timeframes → lookback in days.
TIMEFRAMES: dict[str, int] = {
    "1d": 1,
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "1y": 365,
}
DEFAULT_TIMEFRAME = "30d"


def window_for_timeframe(
    timeframe: str,
    now: datetime.datetime | None = None,
) -> UsageWindow:
    """Window ending at `now`. Unknown timeframes fall back to 30 days."""
    end = now or utcnow()
    days = TIMEFRAMES.get(timeframe, TIMEFRAMES[DEFAULT_TIMEFRAME])
    return UsageWindow(start=end - datetime.timedelta(days=days), end=end)


@dataclass(frozen=True, slots=True)
class RecordResult:
    """Whether a usage row made it to storage."""

    logged: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class UsageReport:
    window: UsageWindow
    stats: UsageStats
    endpoints: list[EndpointStats]
    status_codes: list[StatusCodeStats]


class UsageAccountant:
    """Prices and records request outcomes; aggregates them on read."""

    def __init__(self, store: UsageStore) -> None:
        self._store = store

    async def record(self, entry: UsageEntry) -> RecordResult:
        try:
            cost = (
                calculate_cost(entry.model_name, entry.tokens_used)
                if entry.model_name
                else Decimal("0")
            )
            await self._store.append(replace(entry, cost_usd=cost))
        except Exception as exc:
            logger.exception(
                "Failed to record usage: %s %s status=%d key=%s",
                entry.method,
                entry.endpoint,
                entry.status_code,
                entry.api_key_id,
            )
            return RecordResult(logged=False, error=str(exc) or type(exc).__name__)

        return RecordResult(logged=True)

    async def aggregate(
        self,
        owner_id: uuid.UUID | None,
        window: UsageWindow,
        api_key_id: uuid.UUID | None = None,
    ) -> UsageStats:
        return await self._store.aggregate(owner_id, window, api_key_id)

    async def report(
        self,
        owner_id: uuid.UUID | None,
        window: UsageWindow,
        api_key_id: uuid.UUID | None = None,
    ) -> UsageReport:
        """
        Stats plus endpoint and status-code breakdowns for one window.

        owner_id=None reports on the whole gateway.
        """
        return UsageReport(
            window=window,
            stats=await self._store.aggregate(owner_id, window, api_key_id),
            endpoints=await self._store.by_endpoint(owner_id, window, api_key_id),
            status_codes=await self._store.by_status_code(
                owner_id, window, api_key_id,
            ),
        )

    async def top_owners(self, window: UsageWindow) -> list[OwnerUsage]:
        return await self._store.top_owners(window)
