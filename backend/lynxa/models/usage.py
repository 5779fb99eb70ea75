"""
SQLAlchemy model for the `usage_logs` table.

Each row records one gated request — append-only, never updated.
Analytics and billing are read-side reductions over these rows.

Design notes:
  • cost_usd uses NUMERIC(12,8) — exact decimal arithmetic, no float rounding.
  • api_key_id is SET NULL on key removal so history survives.
  • Composite indexes on (owner_id, timestamp) and (api_key_id, timestamp)
    support the windowed aggregation queries.
"""

import uuid
import datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column

from lynxa.core.database import Base, utcnow


class UsageLog(Base):
    """One handled request against the gateway."""

    __tablename__ = "usage_logs"

    # ── Primary key ─────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # ── Ownership ───────────────────────────────────────────
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("owners.id", ondelete="CASCADE"),
        nullable=False,
    )
    api_key_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("api_keys.id", ondelete="SET NULL"),
        nullable=True,
    )

    # ── Request / outcome ───────────────────────────────────
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    latency_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    tokens_used: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
    )
    model_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cost_usd: Mapped[Decimal] = mapped_column(
        Numeric(12, 8),
        nullable=False,
        default=Decimal("0"),
    )

    # ── Client metadata ─────────────────────────────────────
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    timestamp: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    # ── Table-level constraints ─────────────────────────────
    __table_args__ = (
        CheckConstraint("tokens_used >= 0", name="ck_usage_tokens_non_neg"),
        CheckConstraint("latency_ms >= 0", name="ck_usage_latency_non_neg"),
        Index("ix_usage_logs_owner_timestamp", "owner_id", "timestamp"),
        Index("ix_usage_logs_api_key_timestamp", "api_key_id", "timestamp"),
        Index("ix_usage_logs_endpoint", "endpoint"),
    )

    def __repr__(self) -> str:
        return (
            f"<UsageLog id={self.id!s:.8} {self.method} {self.endpoint} "
            f"status={self.status_code}>"
        )
