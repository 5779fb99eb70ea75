"""
API key model — authentication credential plus its rate-limit policy.

Security notes:
  • Raw API keys are NEVER stored. Only a SHA-256 hash is persisted.
  • The `prefix` column stores the first 12 characters (e.g. "lynxa_3f9a01")
    for identification in logs/UI without exposing the full key.
  • `is_active` allows revocation without deletion (audit trail).
    Rows are never deleted.
  • `usage_count` is only ever changed with an in-database increment.
"""

import uuid
import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func, true
from sqlalchemy.orm import Mapped, mapped_column

from lynxa.core.database import Base, utcnow


class APIKey(Base):
    """Hashed API key belonging to an owner."""

    __tablename__ = "api_keys"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("owners.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    key_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )
    prefix: Mapped[str] = mapped_column(String(12), nullable=False)

    # ── Policy ──────────────────────────────────────────────
    permissions: Mapped[list[str]] = mapped_column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=False,
        default=list,
    )
    rate_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    rate_limit_window_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Status / counters ───────────────────────────────────
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    usage_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
    )
    last_used_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        CheckConstraint("rate_limit >= 1", name="ck_api_keys_rate_limit_pos"),
        CheckConstraint(
            "rate_limit_window_ms >= 1", name="ck_api_keys_window_pos",
        ),
        Index("ix_api_keys_owner_active", "owner_id", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<APIKey id={self.id!s:.8} prefix={self.prefix!r} "
            f"active={self.is_active} uses={self.usage_count}>"
        )
