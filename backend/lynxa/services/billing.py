"""
Billing tiers and usage alerts.

Plans are static for now; an owner's tier is stored on the owner row
and the payment processor integration lives elsewhere.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal

from lynxa.stores.usage import UsageWindow

# Alert thresholds, percent of the monthly allowance.
WARNING_THRESHOLD = 90.0
INFO_THRESHOLD = 75.0


@dataclass(frozen=True, slots=True)
class TierLimits:
    monthly_requests: int
    monthly_tokens: int
    # Advertised only; keys are capped by MAX_ACTIVE_KEYS_PER_OWNER and
    # rate-limited by their own policy.
    api_keys: int
    rate_limit: int


@dataclass(frozen=True, slots=True)
class PricingTier:
    id: str
    name: str
    price_usd: Decimal
    limits: TierLimits
    features: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class BillingAlert:
    type: str  # "warning" | "info"
    category: str  # "usage" | "tokens"
    message: str
    action: str | None = None


PRICING_TIERS: tuple[PricingTier, ...] = (
    PricingTier(
        id="free",
        name="Free",
        price_usd=Decimal("0"),
        limits=TierLimits(1_000, 50_000, 2, 10),
        features=("Basic API access", "Community support", "Usage analytics"),
    ),
    PricingTier(
        id="starter",
        name="Starter",
        price_usd=Decimal("29"),
        limits=TierLimits(10_000, 500_000, 5, 50),
        features=(
            "All Free features",
            "Email support",
            "Advanced analytics",
            "Custom rate limits",
        ),
    ),
    PricingTier(
        id="professional",
        name="Professional",
        price_usd=Decimal("99"),
        limits=TierLimits(100_000, 5_000_000, 20, 200),
        features=(
            "All Starter features",
            "Priority support",
            "Webhook notifications",
            "Team management",
        ),
    ),
    PricingTier(
        id="enterprise",
        name="Enterprise",
        price_usd=Decimal("499"),
        limits=TierLimits(1_000_000, 50_000_000, 100, 1000),
        features=(
            "All Professional features",
            "24/7 dedicated support",
            "SLA guarantees",
            "Advanced security",
        ),
    ),
)

_TIERS_BY_ID = {tier.id: tier for tier in PRICING_TIERS}


def get_tier(tier_id: str) -> PricingTier:
    """Look up a tier; unknown ids resolve to the free tier."""
    return _TIERS_BY_ID.get(tier_id, PRICING_TIERS[0])


def current_month_window(now: datetime.datetime) -> UsageWindow:
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return UsageWindow(start=start, end=now)


def next_billing_date(now: datetime.datetime) -> datetime.date:
    """First day of the following month."""
    if now.month == 12:
        return datetime.date(now.year + 1, 1, 1)
    return datetime.date(now.year, now.month + 1, 1)


def billing_alerts(
    monthly_requests: int,
    monthly_tokens: int,
    tier: PricingTier,
) -> list[BillingAlert]:
    alerts: list[BillingAlert] = []

    request_pct = monthly_requests * 100 / tier.limits.monthly_requests
    if request_pct >= WARNING_THRESHOLD:
        alerts.append(BillingAlert(
            type="warning",
            category="usage",
            message=f"You've used {request_pct:.1f}% of your monthly request limit",
            action="Consider upgrading your plan",
        ))
    elif request_pct >= INFO_THRESHOLD:
        alerts.append(BillingAlert(
            type="info",
            category="usage",
            message=f"You've used {request_pct:.1f}% of your monthly request limit",
        ))

    token_pct = monthly_tokens * 100 / tier.limits.monthly_tokens
    if token_pct >= WARNING_THRESHOLD:
        alerts.append(BillingAlert(
            type="warning",
            category="tokens",
            message=f"You've used {token_pct:.1f}% of your monthly token limit",
            action="Consider upgrading your plan",
        ))

    return alerts
