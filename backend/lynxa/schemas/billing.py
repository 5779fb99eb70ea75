"""Pydantic v2 response schemas for GET /billing."""

from __future__ import annotations

import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class TierLimitsOut(BaseModel):
    """
    Plan allowances as advertised.

    Only the monthly figures drive billing alerts. `api_keys` and
    `rate_limit` are informational: the key cap comes from
    MAX_ACTIVE_KEYS_PER_OWNER and each key carries its own rate limit.
    """

    model_config = ConfigDict(from_attributes=True)

    monthly_requests: int
    monthly_tokens: int
    api_keys: int = Field(
        description="Informational; not enforced by the gateway.",
    )
    rate_limit: int = Field(
        description="Informational; not enforced by the gateway.",
    )


class PricingTierOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    price_usd: Decimal
    limits: TierLimitsOut
    features: list[str]


class BillingAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    category: str
    message: str
    action: str | None = None


class CurrentUsageOut(BaseModel):
    requests: int
    tokens: int
    cost_usd: Decimal
    request_limit_pct: float
    token_limit_pct: float


class BillingOut(BaseModel):
    tier: PricingTierOut
    current_usage: CurrentUsageOut
    alerts: list[BillingAlertOut]
    next_billing_date: datetime.date
    pricing_tiers: list[PricingTierOut]
