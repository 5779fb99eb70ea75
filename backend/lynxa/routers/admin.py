"""
Admin router — system-wide usage and the audit trail.

Only owners with an admin role get in (403 for everyone else); calls
count against the caller's "admin:<owner_id>" bucket.

Endpoints:
  GET /admin/dashboard — account counts, usage totals, busiest endpoints
                         and owners, latest audit events
  GET /admin/audit     — paginated, filterable audit log (newest first)
"""

import datetime
import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from lynxa.auth.dependencies import get_gate
from lynxa.auth.rate_limit import require_admin
from lynxa.auth.verifier import VerifiedIdentity
from lynxa.core.database import get_db_session
from lynxa.models.api_key import APIKey
from lynxa.models.owner import Owner
from lynxa.schemas.admin import (
    AccountCountsOut,
    AuditEntryOut,
    AuditPageOut,
    DashboardOut,
    OwnerUsageOut,
    PaginationOut,
)
from lynxa.schemas.analytics import (
    DateRangeOut,
    EndpointUsageOut,
    StatusCodeOut,
    UsageStatsOut,
)
from lynxa.services import audit
from lynxa.services.gate import RequestGate
from lynxa.services.usage import DEFAULT_TIMEFRAME, TIMEFRAMES, window_for_timeframe
from lynxa.stores.usage import UsageWindow

router = APIRouter(tags=["Admin"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Admin = Annotated[VerifiedIdentity, Depends(require_admin)]
Gate = Annotated[RequestGate, Depends(get_gate)]

RECENT_AUDIT_EVENTS = 20
MAX_AUDIT_PAGE = 500


async def _account_counts(session: AsyncSession, window: UsageWindow) -> AccountCountsOut:
    active_owners = await session.scalar(
        select(func.count()).select_from(Owner).where(Owner.is_active.is_(True)),
    )
    new_owners = await session.scalar(
        select(func.count()).select_from(Owner).where(Owner.created_at >= window.start),
    )
    live_keys = await session.scalar(
        select(func.count())
        .select_from(APIKey)
        .where(
            APIKey.is_active.is_(True),
            or_(APIKey.expires_at.is_(None), APIKey.expires_at > window.end),
        ),
    )
    return AccountCountsOut(
        active_owners=active_owners or 0,
        new_owners=new_owners or 0,
        live_keys=live_keys or 0,
    )


@router.get(
    "/dashboard",
    response_model=DashboardOut,
    summary="System-wide usage overview",
    description=(
        f"Timeframes: {', '.join(TIMEFRAMES)}. Unknown values fall back to "
        f"{DEFAULT_TIMEFRAME}."
    ),
)
async def get_dashboard(
    identity: Admin,
    gate: Gate,
    session: DbSession,
    timeframe: str = Query(default=DEFAULT_TIMEFRAME),
) -> DashboardOut:
    if timeframe not in TIMEFRAMES:
        timeframe = DEFAULT_TIMEFRAME
    window = window_for_timeframe(timeframe)

    report = await gate.accountant.report(None, window)
    top_owners = await gate.accountant.top_owners(window)
    recent = await audit.list_events(session, limit=RECENT_AUDIT_EVENTS)

    return DashboardOut(
        timeframe=timeframe,
        date_range=DateRangeOut.model_validate(window),
        accounts=await _account_counts(session, window),
        stats=UsageStatsOut.model_validate(report.stats),
        endpoints=[EndpointUsageOut.model_validate(e) for e in report.endpoints],
        status_codes=[StatusCodeOut.model_validate(s) for s in report.status_codes],
        top_owners=[OwnerUsageOut.model_validate(o) for o in top_owners],
        recent_audit=[AuditEntryOut.model_validate(e) for e in recent.entries],
    )


@router.get(
    "/audit",
    response_model=AuditPageOut,
    summary="Audit log",
)
async def get_audit_log(
    identity: Admin,
    session: DbSession,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=100, ge=1, le=MAX_AUDIT_PAGE),
    event_type: str | None = Query(default=None),
    owner_id: uuid.UUID | None = Query(default=None),
    resource_type: str | None = Query(default=None),
    start: datetime.datetime | None = Query(default=None),
    end: datetime.datetime | None = Query(default=None),
) -> AuditPageOut:
    result = await audit.list_events(
        session,
        page=page,
        limit=limit,
        event_type=event_type,
        owner_id=owner_id,
        resource_type=resource_type,
        start=start,
        end=end,
    )
    return AuditPageOut(
        entries=[AuditEntryOut.model_validate(e) for e in result.entries],
        pagination=PaginationOut.model_validate(result),
    )
