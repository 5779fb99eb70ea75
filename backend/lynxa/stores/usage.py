"""
Usage store — append-only request log and its read-side reductions.

All aggregation happens in SQL; no Python-side loops over rows.
Rows are never updated once written.
"""

from __future__ import annotations

import datetime
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lynxa.auth.errors import StorageUnavailable
from lynxa.core.database import utcnow
from lynxa.models.owner import Owner
from lynxa.models.usage import UsageLog

logger = logging.getLogger(__name__)

# Breakdowns only return the busiest endpoints.
TOP_ENDPOINTS = 10
TOP_OWNERS = 10


@dataclass(frozen=True, slots=True)
class UsageEntry:
    """One request outcome, as handed to the accountant."""

    owner_id: uuid.UUID
    api_key_id: uuid.UUID | None
    endpoint: str
    method: str
    status_code: int
    latency_ms: int
    tokens_used: int = 0
    model_name: str | None = None
    cost_usd: Decimal = Decimal("0")
    ip_address: str | None = None
    user_agent: str | None = None
    error_message: str | None = None
    timestamp: datetime.datetime = field(default_factory=utcnow)


@dataclass(frozen=True, slots=True)
class UsageWindow:
    """Closed time interval [start, end]."""

    start: datetime.datetime
    end: datetime.datetime


@dataclass(frozen=True, slots=True)
class UsageStats:
    total_requests: int
    successful_requests: int
    error_requests: int
    avg_latency_ms: float
    total_tokens: int
    total_cost_usd: Decimal

    @property
    def success_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return round(self.successful_requests * 100 / self.total_requests, 2)

    @property
    def error_rate(self) -> float:
        if not self.total_requests:
            return 0.0
        return round(self.error_requests * 100 / self.total_requests, 2)


@dataclass(frozen=True, slots=True)
class EndpointStats:
    endpoint: str
    requests: int
    successful_requests: int
    error_requests: int
    avg_latency_ms: float
    tokens: int
    cost_usd: Decimal


@dataclass(frozen=True, slots=True)
class StatusCodeStats:
    status_code: int
    count: int
    percentage: float


@dataclass(frozen=True, slots=True)
class OwnerUsage:
    owner_id: uuid.UUID
    email: str
    requests: int
    tokens: int
    cost_usd: Decimal


class UsageStore(Protocol):
    async def append(self, entry: UsageEntry) -> None: ...

    async def aggregate(
        self,
        owner_id: uuid.UUID | None,
        window: UsageWindow,
        api_key_id: uuid.UUID | None = None,
    ) -> UsageStats: ...

    async def by_endpoint(
        self,
        owner_id: uuid.UUID | None,
        window: UsageWindow,
        api_key_id: uuid.UUID | None = None,
    ) -> list[EndpointStats]: ...

    async def by_status_code(
        self,
        owner_id: uuid.UUID | None,
        window: UsageWindow,
        api_key_id: uuid.UUID | None = None,
    ) -> list[StatusCodeStats]: ...

    async def top_owners(
        self,
        window: UsageWindow,
        limit: int = TOP_OWNERS,
    ) -> list[OwnerUsage]: ...


# ── SQL fragments ───────────────────────────────────────────
_SUCCESS = func.coalesce(
    func.sum(case((UsageLog.status_code.between(200, 299), 1), else_=0)), 0,
)
_ERROR = func.coalesce(
    func.sum(case((UsageLog.status_code >= 400, 1), else_=0)), 0,
)


def _scope(
    owner_id: uuid.UUID | None,
    window: UsageWindow,
    api_key_id: uuid.UUID | None,
) -> list:
    """WHERE clauses for one window; owner_id=None spans every owner."""
    clauses = [
        UsageLog.timestamp >= window.start,
        UsageLog.timestamp <= window.end,
    ]
    if owner_id is not None:
        clauses.append(UsageLog.owner_id == owner_id)
    if api_key_id is not None:
        clauses.append(UsageLog.api_key_id == api_key_id)
    return clauses


class SqlUsageStore:
    """SQLAlchemy-backed UsageStore."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except (SQLAlchemyError, OSError) as exc:
            raise StorageUnavailable("usage store unavailable") from exc

    async def append(self, entry: UsageEntry) -> None:
        row = UsageLog(
            owner_id=entry.owner_id,
            api_key_id=entry.api_key_id,
            endpoint=entry.endpoint,
            method=entry.method,
            status_code=entry.status_code,
            latency_ms=entry.latency_ms,
            tokens_used=entry.tokens_used,
            model_name=entry.model_name,
            cost_usd=entry.cost_usd,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            error_message=entry.error_message,
            timestamp=entry.timestamp,
        )
        async with self._session() as session:
            session.add(row)
            await session.commit()

    async def aggregate(
        self,
        owner_id: uuid.UUID | None,
        window: UsageWindow,
        api_key_id: uuid.UUID | None = None,
    ) -> UsageStats:
        """
        SQL: SELECT COUNT(*), SUM(2xx), SUM(>=400), AVG(latency_ms),
                    SUM(tokens_used), SUM(cost_usd)
             FROM usage_logs WHERE timestamp IN window [AND owner_id = :owner]
        """
        stmt = select(
            func.count().label("total_requests"),
            _SUCCESS.label("successful_requests"),
            _ERROR.label("error_requests"),
            func.avg(UsageLog.latency_ms).label("avg_latency_ms"),
            func.coalesce(func.sum(UsageLog.tokens_used), 0).label("total_tokens"),
            func.coalesce(func.sum(UsageLog.cost_usd), 0).label("total_cost_usd"),
        ).where(*_scope(owner_id, window, api_key_id))

        async with self._session() as session:
            row = (await session.execute(stmt)).one()

        return UsageStats(
            total_requests=int(row.total_requests),
            successful_requests=int(row.successful_requests),
            error_requests=int(row.error_requests),
            avg_latency_ms=float(row.avg_latency_ms or 0),
            total_tokens=int(row.total_tokens),
            total_cost_usd=Decimal(str(row.total_cost_usd)),
        )

    async def by_endpoint(
        self,
        owner_id: uuid.UUID | None,
        window: UsageWindow,
        api_key_id: uuid.UUID | None = None,
    ) -> list[EndpointStats]:
        requests = func.count().label("requests")
        stmt = (
            select(
                UsageLog.endpoint,
                requests,
                _SUCCESS.label("successful_requests"),
                _ERROR.label("error_requests"),
                func.avg(UsageLog.latency_ms).label("avg_latency_ms"),
                func.coalesce(func.sum(UsageLog.tokens_used), 0).label("tokens"),
                func.coalesce(func.sum(UsageLog.cost_usd), 0).label("cost_usd"),
            )
            .where(*_scope(owner_id, window, api_key_id))
            .group_by(UsageLog.endpoint)
            .order_by(requests.desc())
            .limit(TOP_ENDPOINTS)
        )

        async with self._session() as session:
            rows = (await session.execute(stmt)).all()

        return [
            EndpointStats(
                endpoint=row.endpoint,
                requests=int(row.requests),
                successful_requests=int(row.successful_requests),
                error_requests=int(row.error_requests),
                avg_latency_ms=float(row.avg_latency_ms or 0),
                tokens=int(row.tokens),
                cost_usd=Decimal(str(row.cost_usd)),
            )
            for row in rows
        ]

    async def by_status_code(
        self,
        owner_id: uuid.UUID | None,
        window: UsageWindow,
        api_key_id: uuid.UUID | None = None,
    ) -> list[StatusCodeStats]:
        count = func.count().label("count")
        stmt = (
            select(UsageLog.status_code, count)
            .where(*_scope(owner_id, window, api_key_id))
            .group_by(UsageLog.status_code)
            .order_by(count.desc(), UsageLog.status_code.asc())
        )

        async with self._session() as session:
            rows = (await session.execute(stmt)).all()

        total = sum(row.count for row in rows)
        return [
            StatusCodeStats(
                status_code=row.status_code,
                count=int(row.count),
                percentage=round(row.count * 100 / total, 2),
            )
            for row in rows
        ]

    async def top_owners(
        self,
        window: UsageWindow,
        limit: int = TOP_OWNERS,
    ) -> list[OwnerUsage]:
        """Busiest owners across the whole gateway for one window."""
        requests = func.count(UsageLog.id).label("requests")
        stmt = (
            select(
                Owner.id.label("owner_id"),
                Owner.email,
                requests,
                func.coalesce(func.sum(UsageLog.tokens_used), 0).label("tokens"),
                func.coalesce(func.sum(UsageLog.cost_usd), 0).label("cost_usd"),
            )
            .select_from(UsageLog)
            .join(Owner, Owner.id == UsageLog.owner_id)
            .where(*_scope(None, window, None))
            .group_by(Owner.id, Owner.email)
            .order_by(requests.desc(), Owner.email.asc())
            .limit(limit)
        )

        async with self._session() as session:
            rows = (await session.execute(stmt)).all()

        return [
            OwnerUsage(
                owner_id=row.owner_id,
                email=row.email,
                requests=int(row.requests),
                tokens=int(row.tokens),
                cost_usd=Decimal(str(row.cost_usd)),
            )
            for row in rows
        ]
