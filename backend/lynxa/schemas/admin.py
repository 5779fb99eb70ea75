"""Pydantic v2 response schemas for the admin endpoints."""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from lynxa.schemas.analytics import (
    DateRangeOut,
    EndpointUsageOut,
    StatusCodeOut,
    UsageStatsOut,
)


class AccountCountsOut(BaseModel):
    active_owners: int
    new_owners: int
    live_keys: int


class OwnerUsageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    owner_id: uuid.UUID
    email: str
    requests: int
    tokens: int
    cost_usd: Decimal


class AuditEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    owner_id: uuid.UUID | None
    owner_email: str | None
    event_type: str
    description: str
    resource_type: str | None
    resource_id: str | None
    ip_address: str | None
    user_agent: str | None
    timestamp: datetime.datetime


class PaginationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    page: int
    limit: int
    total: int
    pages: int


class AuditPageOut(BaseModel):
    entries: list[AuditEntryOut]
    pagination: PaginationOut


class DashboardOut(BaseModel):
    """System-wide picture over one timeframe."""

    timeframe: str
    date_range: DateRangeOut
    accounts: AccountCountsOut
    stats: UsageStatsOut
    endpoints: list[EndpointUsageOut]
    status_codes: list[StatusCodeOut]
    top_owners: list[OwnerUsageOut]
    recent_audit: list[AuditEntryOut]
