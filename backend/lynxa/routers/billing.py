"""
Billing router — current-month usage measured against the owner's tier.

Endpoints:
  GET /billing — tier, limits, usage, alerts, next billing date, all tiers
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lynxa.auth.dependencies import get_gate
from lynxa.auth.permissions import READ
from lynxa.auth.rate_limit import require_permission
from lynxa.auth.verifier import VerifiedIdentity
from lynxa.core.database import get_db_session, utcnow
from lynxa.models.owner import Owner
from lynxa.schemas.billing import (
    BillingAlertOut,
    BillingOut,
    CurrentUsageOut,
    PricingTierOut,
)
from lynxa.services.billing import (
    PRICING_TIERS,
    billing_alerts,
    current_month_window,
    get_tier,
    next_billing_date,
)
from lynxa.services.gate import RequestGate


router = APIRouter(tags=["Billing"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Reader = Annotated[VerifiedIdentity, Depends(require_permission(READ))]
Gate = Annotated[RequestGate, Depends(get_gate)]


@router.get(
    "",
    response_model=BillingOut,
    summary="Billing overview for the current month",
)
async def get_billing(
    identity: Reader,
    gate: Gate,
    session: DbSession,
) -> BillingOut:
    tier_id = await session.scalar(
        select(Owner.tier).where(Owner.id == identity.owner_id),
    )
    if tier_id is None:
        # Key verified a moment ago, so the owner row vanished in between.
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Account not found.",
        )

    tier = get_tier(tier_id)
    now = utcnow()
    stats = await gate.accountant.aggregate(
        identity.owner_id, current_month_window(now),
    )

    return BillingOut(
        tier=PricingTierOut.model_validate(tier),
        current_usage=CurrentUsageOut(
            requests=stats.total_requests,
            tokens=stats.total_tokens,
            cost_usd=stats.total_cost_usd,
            request_limit_pct=round(
                stats.total_requests * 100 / tier.limits.monthly_requests, 2,
            ),
            token_limit_pct=round(
                stats.total_tokens * 100 / tier.limits.monthly_tokens, 2,
            ),
        ),
        alerts=[
            BillingAlertOut.model_validate(alert)
            for alert in billing_alerts(stats.total_requests, stats.total_tokens, tier)
        ],
        next_billing_date=next_billing_date(now),
        pricing_tiers=[PricingTierOut.model_validate(t) for t in PRICING_TIERS],
    )
