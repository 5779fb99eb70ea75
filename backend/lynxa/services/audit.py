"""
Audit trail writer and reader.

Writes are best-effort: an audit row that fails to persist is logged and
dropped, the owning request still succeeds. Reads (the admin listing)
surface storage failures as StorageUnavailable.
"""

from __future__ import annotations

import datetime
import logging
import math
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from lynxa.auth.errors import StorageUnavailable
from lynxa.core.database import as_utc
from lynxa.models.audit import AuditLog
from lynxa.models.owner import Owner

logger = logging.getLogger(__name__)

KEY_CREATED = "api_key.created"
KEY_UPDATED = "api_key.updated"
KEY_REVOKED = "api_key.revoked"


@dataclass(frozen=True, slots=True)
class AuditEntry:
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


@dataclass(frozen=True, slots=True)
class AuditPage:
    entries: list[AuditEntry]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit)


async def log_event(
    session: AsyncSession,
    *,
    owner_id: uuid.UUID | None,
    event_type: str,
    description: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """Persist one audit row. Returns False (after logging) on failure."""
    try:
        session.add(AuditLog(
            owner_id=owner_id,
            event_type=event_type,
            description=description,
            resource_type=resource_type,
            resource_id=resource_id,
            ip_address=ip_address,
            user_agent=user_agent,
        ))
        await session.commit()
    except (SQLAlchemyError, OSError):
        await session.rollback()
        logger.exception("Audit logging failed for %s", event_type)
        return False

    return True


async def list_events(
    session: AsyncSession,
    *,
    page: int = 1,
    limit: int = 100,
    event_type: str | None = None,
    owner_id: uuid.UUID | None = None,
    resource_type: str | None = None,
    start: datetime.datetime | None = None,
    end: datetime.datetime | None = None,
) -> AuditPage:
    """
    One page of audit rows, newest first, with the owner's email attached.

    Every filter is optional; `start` and `end` are inclusive.
    """
    clauses = []
    if event_type is not None:
        clauses.append(AuditLog.event_type == event_type)
    if owner_id is not None:
        clauses.append(AuditLog.owner_id == owner_id)
    if resource_type is not None:
        clauses.append(AuditLog.resource_type == resource_type)
    if start is not None:
        clauses.append(AuditLog.timestamp >= start)
    if end is not None:
        clauses.append(AuditLog.timestamp <= end)

    rows_stmt = (
        select(AuditLog, Owner.email)
        .outerjoin(Owner, Owner.id == AuditLog.owner_id)
        .where(*clauses)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id)
        .limit(limit)
        .offset((page - 1) * limit)
    )
    count_stmt = select(func.count()).select_from(AuditLog).where(*clauses)

    try:
        rows = (await session.execute(rows_stmt)).all()
        total = (await session.execute(count_stmt)).scalar_one()
    except (SQLAlchemyError, OSError) as exc:
        logger.error("Audit log unavailable: %s", exc.__class__.__name__)
        raise StorageUnavailable("audit log unavailable") from exc

    entries = [
        AuditEntry(
            id=row.id,
            owner_id=row.owner_id,
            owner_email=email,
            event_type=row.event_type,
            description=row.description,
            resource_type=row.resource_type,
            resource_id=row.resource_id,
            ip_address=row.ip_address,
            user_agent=row.user_agent,
            timestamp=as_utc(row.timestamp),
        )
        for row, email in rows
    ]
    return AuditPage(entries=entries, page=page, limit=limit, total=int(total))
