"""
Analytics router — aggregated usage for the calling owner.

All aggregation happens in SQL inside the usage store.
Decimal precision is preserved end-to-end (DB NUMERIC → Python Decimal → JSON string).

Endpoints:
  GET /analytics/usage — totals, endpoint breakdown and status codes
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from lynxa.auth.dependencies import get_gate
from lynxa.auth.permissions import READ
from lynxa.auth.rate_limit import require_permission
from lynxa.auth.verifier import VerifiedIdentity
from lynxa.schemas.analytics import (
    DateRangeOut,
    EndpointUsageOut,
    StatusCodeOut,
    UsageReportOut,
    UsageStatsOut,
)
from lynxa.services.gate import RequestGate
from lynxa.services.usage import DEFAULT_TIMEFRAME, TIMEFRAMES, window_for_timeframe

router = APIRouter(tags=["Analytics"])

Reader = Annotated[VerifiedIdentity, Depends(require_permission(READ))]
Gate = Annotated[RequestGate, Depends(get_gate)]


@router.get(
    "/usage",
    response_model=UsageReportOut,
    summary="Usage statistics for the calling owner",
    description=(
        f"Timeframes: {', '.join(TIMEFRAMES)}. Unknown values fall back to "
        f"{DEFAULT_TIMEFRAME}. Pass api_key_id to narrow to one key."
    ),
)
async def get_usage(
    identity: Reader,
    gate: Gate,
    timeframe: str = Query(default=DEFAULT_TIMEFRAME),
    api_key_id: uuid.UUID | None = Query(default=None),
) -> UsageReportOut:
    if timeframe not in TIMEFRAMES:
        timeframe = DEFAULT_TIMEFRAME

    report = await gate.accountant.report(
        identity.owner_id,
        window_for_timeframe(timeframe),
        api_key_id,
    )
    return UsageReportOut(
        timeframe=timeframe,
        date_range=DateRangeOut.model_validate(report.window),
        stats=UsageStatsOut.model_validate(report.stats),
        endpoints=[EndpointUsageOut.model_validate(e) for e in report.endpoints],
        status_codes=[StatusCodeOut.model_validate(s) for s in report.status_codes],
    )
