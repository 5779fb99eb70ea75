"""
Owner model — the account that owns API keys and usage.

The identity provider (OAuth) is outside this service; an owner row is the
local projection it would maintain. `tier` maps to a billing plan.
"""

import uuid
import datetime

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.sql import func, true
from sqlalchemy.orm import Mapped, mapped_column

from lynxa.core.database import Base, utcnow


class Owner(Base):
    """One customer account — the top-level isolation boundary."""

    __tablename__ = "owners"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True,
    )
    display_name: Mapped[str | None] = mapped_column(
        String(200), nullable=True,
    )
    role: Mapped[str] = mapped_column(
        String(50), nullable=False, default="user", server_default="user",
    )
    tier: Mapped[str] = mapped_column(
        String(50), nullable=False, default="free", server_default="free",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true(),
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Owner id={self.id!s:.8} email={self.email!r} tier={self.tier}>"
