"""
Pydantic v2 response schemas for the analytics endpoint.

All monetary fields use Decimal — no floats for money.
The store dataclasses map directly through from_attributes=True.
"""

from __future__ import annotations

import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class DateRangeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: datetime.datetime
    end: datetime.datetime


class UsageStatsOut(BaseModel):
    """Totals for one owner (optionally one key) over a window."""

    model_config = ConfigDict(from_attributes=True)

    total_requests: int
    successful_requests: int
    error_requests: int
    success_rate: float
    error_rate: float
    avg_latency_ms: float
    total_tokens: int
    total_cost_usd: Decimal


class EndpointUsageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    endpoint: str
    requests: int
    successful_requests: int
    error_requests: int
    avg_latency_ms: float
    tokens: int
    cost_usd: Decimal


class StatusCodeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status_code: int
    count: int
    percentage: float


class UsageReportOut(BaseModel):
    timeframe: str
    date_range: DateRangeOut
    stats: UsageStatsOut
    endpoints: list[EndpointUsageOut]
    status_codes: list[StatusCodeOut]
